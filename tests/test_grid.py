import unittest

from playprobe_vision.grid import (
    CellOutOfRangeError,
    GridCell,
    GridSpec,
    MalformedCellError,
    column_label,
    column_position,
    parse_cell,
)


class ColumnLabelTest(unittest.TestCase):
    def test_labels_follow_spreadsheet_order(self) -> None:
        cases = [(0, "A"), (9, "J"), (25, "Z"), (26, "AA"), (27, "AB"), (701, "ZZ"), (702, "AAA")]
        for index, label in cases:
            with self.subTest(index=index):
                self.assertEqual(column_label(index), label)
                self.assertEqual(column_position(label), index)

    def test_negative_index_rejected(self) -> None:
        with self.assertRaises(ValueError):
            column_label(-1)


class ParseCellTest(unittest.TestCase):
    def test_valid_labels(self) -> None:
        cases = {
            "J10": GridCell("J", 10),
            "a1": GridCell("A", 1),
            " t12 ": GridCell("T", 12),
            "AB3": GridCell("AB", 3),
        }
        for text, expected in cases.items():
            with self.subTest(text=text):
                self.assertEqual(parse_cell(text), expected)

    def test_malformed_labels(self) -> None:
        for text in ["", "   ", "10", "J", "J0", "J1A", "J-1", "1J", "J 10", "Ĵ10"]:
            with self.subTest(text=text):
                with self.assertRaises(MalformedCellError):
                    parse_cell(text)

    def test_non_string_rejected(self) -> None:
        with self.assertRaises(MalformedCellError):
            parse_cell(10)  # type: ignore[arg-type]


class GridSpecTest(unittest.TestCase):
    def setUp(self) -> None:
        self.grid = GridSpec()

    def test_default_dimensions(self) -> None:
        self.assertEqual((self.grid.columns, self.grid.rows), (20, 12))
        self.assertEqual(self.grid.last_column, "T")
        self.assertIn("A-T", self.grid.describe())

    def test_cell_center_uses_truncated_formula(self) -> None:
        width, height = 1280, 720
        cell_width, cell_height = width / 20, height / 12
        cases = {
            "A1": (int(cell_width / 2), int(cell_height / 2)),
            "J10": (int(9 * cell_width + cell_width / 2), int(9 * cell_height + cell_height / 2)),
            "T12": (int(19 * cell_width + cell_width / 2), int(11 * cell_height + cell_height / 2)),
        }
        for text, expected in cases.items():
            with self.subTest(cell=text):
                self.assertEqual(self.grid.pixel_of(self.grid.resolve(text), width, height), expected)

    def test_j10_on_default_viewport(self) -> None:
        self.assertEqual(self.grid.pixel_of(GridCell("J", 10), 1280, 720), (608, 570))

    def test_uneven_frame_truncates(self) -> None:
        grid = GridSpec(columns=3, rows=3)
        self.assertEqual(grid.pixel_of(GridCell("B", 2), 100, 100), (50, 50))
        self.assertEqual(grid.pixel_of(GridCell("A", 1), 100, 100), (16, 16))

    def test_out_of_range_cells(self) -> None:
        for text in ["U1", "A13", "AA5"]:
            with self.subTest(text=text):
                with self.assertRaises(CellOutOfRangeError):
                    self.grid.resolve(text)

    def test_out_of_range_is_malformed_subclass(self) -> None:
        with self.assertRaises(MalformedCellError):
            self.grid.pixel_of(GridCell("Z", 1), 1280, 720)

    def test_cell_at_inverts_pixel_of(self) -> None:
        for cell in self.grid.cells():
            x, y = self.grid.pixel_of(cell, 1280, 720)
            self.assertEqual(self.grid.cell_at(x, y, 1280, 720), cell)

    def test_cell_at_clamps_far_edge(self) -> None:
        self.assertEqual(self.grid.cell_at(1280, 720, 1280, 720), GridCell("T", 12))

    def test_cell_bounds(self) -> None:
        self.assertEqual(self.grid.cell_bounds(GridCell("B", 2), 1280, 720), (64, 60, 128, 120))

    def test_cells_enumerates_every_cell(self) -> None:
        cells = list(self.grid.cells())
        self.assertEqual(len(cells), 240)
        self.assertEqual(cells[0], GridCell("A", 1))
        self.assertEqual(cells[-1], GridCell("T", 12))

    def test_invalid_dimensions(self) -> None:
        with self.assertRaises(ValueError):
            GridSpec(columns=0, rows=12)


if __name__ == "__main__":
    unittest.main()
