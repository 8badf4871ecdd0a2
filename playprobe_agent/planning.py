"""Turn perceived targets into concrete actuation plans."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from playprobe_runtime.capture import Frame, FrameCapture
from playprobe_runtime.config import InputConfig
from playprobe_runtime.errors import ControlSurfaceError
from playprobe_runtime.input_dispatcher import ActuationPlan, CoordinateSpace, KeyAction
from playprobe_vision.annotator import mark_click
from playprobe_vision.grid import GridSpec
from playprobe_vision.perception import (
    ActionKind,
    GridCellTarget,
    KeyTarget,
    LabelTarget,
    NotFound,
    PixelTarget,
    Target,
    WaitTarget,
)

if TYPE_CHECKING:  # pragma: no cover - import typing aid only
    from playprobe_runtime.browser import BrowserSession

Logger = logging.Logger

_KEY_ACTIONS: Dict[ActionKind, KeyAction] = {
    ActionKind.KEY_PRESS: KeyAction.PRESS,
    ActionKind.KEY_HOLD: KeyAction.HOLD,
    ActionKind.KEY_RELEASE: KeyAction.RELEASE,
    ActionKind.KEY_SEQUENCE: KeyAction.SEQUENCE,
}


class UnresolvableTargetError(ControlSurfaceError):
    """Raised when a label target cannot be found on the page and has no fallback cell."""

    def __init__(self, label: str) -> None:
        super().__init__(f"no element with text {label!r} and no fallback cell", retryable=False)
        self.label = label


async def resolve_plans(
    target: Target,
    *,
    grid: GridSpec,
    frame: Frame,
    session: "BrowserSession",
    config: InputConfig,
) -> List[ActuationPlan]:
    """Resolve ``target`` against ``frame`` into zero or more plans.

    Grid cells and pixels stay in frame space; the dispatcher scales them to
    the viewport. Labels found in the DOM are already in viewport space.

    Raises:
        UnresolvableTargetError: For a label target that cannot be located.
        UnknownKeyError: For a key target naming an unsupported key.
    """
    frame_size = frame.size

    if isinstance(target, GridCellTarget):
        start = grid.pixel_of(target.cell, frame.width, frame.height)
        if target.end_cell is not None:
            end = grid.pixel_of(target.end_cell, frame.width, frame.height)
            return [
                ActuationPlan.drag(
                    start,
                    end,
                    config,
                    power=target.power,
                    frame_size=frame_size,
                    description=f"drag {target.cell} -> {target.end_cell}",
                )
            ]
        return [ActuationPlan.click(*start, config, frame_size=frame_size, description=f"click {target.cell}")]

    if isinstance(target, PixelTarget):
        if target.end is not None:
            return [ActuationPlan.drag((target.x, target.y), target.end, config, power=target.power, frame_size=frame_size)]
        return [ActuationPlan.click(target.x, target.y, config, frame_size=frame_size)]

    if isinstance(target, LabelTarget):
        position = await session.locate_text(target.label)
        if position is not None:
            return [
                ActuationPlan.click(
                    *position,
                    config,
                    space=CoordinateSpace.VIEWPORT,
                    description=f"click {target.label!r}",
                )
            ]
        if target.cell is not None:
            x, y = grid.pixel_of(target.cell, frame.width, frame.height)
            return [
                ActuationPlan.click(
                    x, y, config, frame_size=frame_size, description=f"click {target.label!r} at {target.cell}"
                )
            ]
        raise UnresolvableTargetError(target.label)

    if isinstance(target, KeyTarget):
        return [
            ActuationPlan.key(
                target.keys,
                config,
                action=_KEY_ACTIONS.get(target.action, KeyAction.PRESS),
                hold_ms=target.hold_ms,
            )
        ]

    if isinstance(target, WaitTarget):
        return [ActuationPlan.wait(target.duration_ms)]

    if isinstance(target, NotFound):
        return []
    raise TypeError(f"unsupported target type {type(target).__name__}")


def save_click_marker(
    capture: FrameCapture,
    frame: Frame,
    x: int,
    y: int,
    label: str,
    *,
    logger: Optional[Logger] = None,
) -> Optional[Path]:
    """Draw a click marker on ``frame`` and store it next to the captures."""

    marked = mark_click(frame, x, y, label, logger=logger)
    return capture.save(marked, f"marker_{frame.phase.value}_{label}_{x}_{y}")


__all__ = ["UnresolvableTargetError", "resolve_plans", "save_click_marker"]
