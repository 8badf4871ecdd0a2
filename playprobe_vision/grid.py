"""Grid cell addressing over captured frames.

A frame is split into ``columns x rows`` equal cells. Columns are lettered like
spreadsheet columns (A..Z, AA, AB, ...); rows are numbered from 1. The center
of a cell in frame pixels is::

    x = col_index * (W / C) + (W / C) / 2
    y = row_index * (H / R) + (H / R) / 2

truncated to integers, where ``row_index = row - 1``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Tuple

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class MalformedCellError(ValueError):
    """Raised when a cell label cannot be parsed."""


class CellOutOfRangeError(MalformedCellError):
    """Raised when a well-formed cell lies outside the configured grid."""


def column_label(index: int) -> str:
    """Return the letters for a 0-based column index (0 -> A, 26 -> AA)."""

    if index < 0:
        raise ValueError(f"column index must be non-negative, got {index}")
    letters = ""
    n = index + 1
    while n:
        n, remainder = divmod(n - 1, 26)
        letters = _ALPHABET[remainder] + letters
    return letters


def column_position(letters: str) -> int:
    """Inverse of :func:`column_label`."""

    if not letters or not all(ch in _ALPHABET for ch in letters):
        raise MalformedCellError(f"invalid column letters {letters!r}")
    value = 0
    for ch in letters:
        value = value * 26 + (_ALPHABET.index(ch) + 1)
    return value - 1


@dataclass(frozen=True, slots=True)
class GridCell:
    """A (column letters, 1-based row) address."""

    column: str
    row: int

    def __post_init__(self) -> None:
        column_position(self.column)
        if self.row < 1:
            raise MalformedCellError(f"row must be at least 1, got {self.row}")

    @property
    def column_index(self) -> int:
        return column_position(self.column)

    @property
    def row_index(self) -> int:
        return self.row - 1

    @property
    def label(self) -> str:
        return f"{self.column}{self.row}"

    def __str__(self) -> str:
        return self.label


def parse_cell(text: str) -> GridCell:
    """Parse labels such as ``"J10"`` or ``"ab3"``.

    Leading letters are scanned until the first digit; everything after them
    must be digits forming a row of at least 1.

    Raises:
        MalformedCellError: For empty input, missing letters or digits,
            trailing characters, or a zero row.
    """
    if not isinstance(text, str):
        raise MalformedCellError(f"cell label must be a string, got {type(text).__name__}")
    cleaned = text.strip().upper()
    if not cleaned:
        raise MalformedCellError("empty cell label")

    split = 0
    while split < len(cleaned) and cleaned[split] in _ALPHABET:
        split += 1
    letters, digits = cleaned[:split], cleaned[split:]

    if not letters:
        raise MalformedCellError(f"cell label {text!r} does not start with column letters")
    if not digits:
        raise MalformedCellError(f"cell label {text!r} has no row digits")
    if not digits.isdigit() or not digits.isascii():
        raise MalformedCellError(f"cell label {text!r} has invalid row {digits!r}")

    row = int(digits)
    if row == 0:
        raise MalformedCellError(f"cell label {text!r} has row 0; rows start at 1")
    return GridCell(column=letters, row=row)


@dataclass(frozen=True, slots=True)
class GridSpec:
    """Grid dimensions plus the cell <-> pixel math."""

    columns: int = 20
    rows: int = 12

    def __post_init__(self) -> None:
        if self.columns < 1 or self.rows < 1:
            raise ValueError(f"grid needs positive dimensions, got {self.columns}x{self.rows}")

    @property
    def last_column(self) -> str:
        return column_label(self.columns - 1)

    def cell(self, col_index: int, row: int) -> GridCell:
        cell = GridCell(column=column_label(col_index), row=row)
        self._check(cell)
        return cell

    def cells(self) -> Iterator[GridCell]:
        for row in range(1, self.rows + 1):
            for col in range(self.columns):
                yield GridCell(column=column_label(col), row=row)

    def contains(self, cell: GridCell) -> bool:
        return cell.column_index < self.columns and 1 <= cell.row <= self.rows

    def resolve(self, text: str) -> GridCell:
        """Parse ``text`` and verify it lies inside this grid.

        Raises:
            MalformedCellError: If the label is malformed.
            CellOutOfRangeError: If the cell is outside the grid.
        """
        cell = parse_cell(text)
        self._check(cell)
        return cell

    def pixel_of(self, cell: GridCell, width: int, height: int) -> Tuple[int, int]:
        """Center pixel of ``cell`` for a ``width x height`` frame."""

        self._check(cell)
        cell_width = width / self.columns
        cell_height = height / self.rows
        x = cell.column_index * cell_width + cell_width / 2
        y = cell.row_index * cell_height + cell_height / 2
        return int(x), int(y)

    def cell_bounds(self, cell: GridCell, width: int, height: int) -> Tuple[int, int, int, int]:
        """``(left, top, right, bottom)`` of ``cell`` in frame pixels."""

        self._check(cell)
        cell_width = width / self.columns
        cell_height = height / self.rows
        left = cell.column_index * cell_width
        top = cell.row_index * cell_height
        return int(left), int(top), int(left + cell_width), int(top + cell_height)

    def cell_at(self, x: float, y: float, width: int, height: int) -> GridCell:
        """Cell containing the pixel ``(x, y)``; points on the far edge clamp inward."""

        col = int(x // (width / self.columns))
        row_index = int(y // (height / self.rows))
        col = max(0, min(self.columns - 1, col))
        row_index = max(0, min(self.rows - 1, row_index))
        return GridCell(column=column_label(col), row=row_index + 1)

    def describe(self) -> str:
        return f"{self.columns}x{self.rows} (columns A-{self.last_column}, rows 1-{self.rows})"

    def _check(self, cell: GridCell) -> None:
        if not self.contains(cell):
            raise CellOutOfRangeError(
                f"cell {cell.label} is outside the {self.columns}x{self.rows} grid"
            )


__all__ = [
    "CellOutOfRangeError",
    "GridCell",
    "GridSpec",
    "MalformedCellError",
    "column_position",
    "column_label",
    "parse_cell",
]
