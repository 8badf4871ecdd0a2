"""Vision layer: grid addressing, frame annotation and the perception oracle."""

from .annotator import annotate_grid, mark_click
from .grid import CellOutOfRangeError, GridCell, GridSpec, MalformedCellError, parse_cell
from .perception import (
    ActionKind,
    GridCellTarget,
    KeyTarget,
    LabelTarget,
    NotFound,
    NothingFoundError,
    OracleTimeoutError,
    OracleUnreachableError,
    PerceptionClient,
    PerceptionConfigError,
    PerceptionError,
    PixelTarget,
    Target,
    UnparsableResponseError,
    WaitTarget,
    parse_targets,
)

__all__ = [
    "ActionKind",
    "CellOutOfRangeError",
    "GridCell",
    "GridCellTarget",
    "GridSpec",
    "KeyTarget",
    "LabelTarget",
    "MalformedCellError",
    "NotFound",
    "NothingFoundError",
    "OracleTimeoutError",
    "OracleUnreachableError",
    "PerceptionClient",
    "PerceptionConfigError",
    "PerceptionError",
    "PixelTarget",
    "Target",
    "UnparsableResponseError",
    "WaitTarget",
    "annotate_grid",
    "mark_click",
    "parse_cell",
    "parse_targets",
]
