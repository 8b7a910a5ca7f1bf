"""Unit tests for markdown table detection and rewriting."""

from mcp_server_roam_import.tables import (
    MarkdownTable,
    convert_all_tables,
    find_tables,
    has_markdown_table,
    render_table,
)

SIMPLE_TABLE = "| A | B |\n|---|---|\n| 1 | 2 |\n| 3 | 4 |"


class TestFindTables:
    """Tests for find_tables."""

    def test_simple_table(self) -> None:
        """Test locating a two-column table."""
        tables = find_tables(SIMPLE_TABLE.split("\n"))
        assert tables == [MarkdownTable(0, 4, ["A", "B"], [["1", "2"], ["3", "4"]])]

    def test_alignment_separators(self) -> None:
        """Test that aligned separator cells are recognised."""
        lines = ["| L | R | C |", "|:---|---:|:-:|", "| a | b | c |"]
        tables = find_tables(lines)
        assert len(tables) == 1
        assert tables[0].header == ["L", "R", "C"]

    def test_header_without_rows_is_not_table(self) -> None:
        """Test that a header and separator alone are ignored."""
        assert find_tables(["| A | B |", "|---|---|"]) == []
        assert find_tables(["| A | B |", "|---|---|", "text"]) == []

    def test_missing_separator(self) -> None:
        """Test that pipe rows without a separator are not a table."""
        assert find_tables(["| A | B |", "| 1 | 2 |", "| 3 | 4 |"]) == []

    def test_inline_pipes_ignored(self) -> None:
        """Test that prose containing pipes is not a table."""
        assert find_tables(["a | b", "--- | ---", "c | d"]) == []

    def test_rows_stop_at_first_non_row(self) -> None:
        """Test that data rows end at the first other line."""
        lines = ["| A |", "|---|", "| 1 |", "after", "| 2 |"]
        tables = find_tables(lines)
        assert tables == [MarkdownTable(0, 3, ["A"], [["1"]])]

    def test_two_tables(self) -> None:
        """Test that separate tables are found in order."""
        lines = ["| A |", "|---|", "| 1 |", "", "| B |", "|---|", "| 2 |"]
        tables = find_tables(lines)
        assert [(t.start, t.end, t.header) for t in tables] == [
            (0, 3, ["A"]),
            (4, 7, ["B"]),
        ]

    def test_indented_table(self) -> None:
        """Test that leading whitespace does not hide a table."""
        lines = ["  | A |", "  |---|", "  | 1 |"]
        assert find_tables(lines)[0].rows == [["1"]]


class TestRenderTable:
    """Tests for render_table."""

    def test_columns_and_cells(self) -> None:
        """Test that cells nest under their column header in row order."""
        lines = render_table(["A", "B"], [["1", "2"], ["3", "4"]])
        assert lines == [
            "{{table}}",
            "  - A",
            "    - 1",
            "    - 3",
            "  - B",
            "    - 2",
            "    - 4",
        ]

    def test_short_rows(self) -> None:
        """Test that missing cells produce no bullet."""
        lines = render_table(["A", "B", "C"], [["1", "2"], ["3", "4", "5"]])
        assert lines == [
            "{{table}}",
            "  - A",
            "    - 1",
            "    - 3",
            "  - B",
            "    - 2",
            "    - 4",
            "  - C",
            "    - 5",
        ]

    def test_empty_cells_skipped(self) -> None:
        """Test that empty cells produce no bullet."""
        lines = render_table(["A", "B"], [["", "2"]])
        assert lines == ["{{table}}", "  - A", "  - B", "    - 2"]

    def test_extra_cells_dropped(self) -> None:
        """Test that cells beyond the header width are dropped."""
        assert render_table(["A"], [["1", "2"]]) == ["{{table}}", "  - A", "    - 1"]

    def test_indent_unit(self) -> None:
        """Test rendering with four-space indentation."""
        lines = render_table(["A"], [["1"]], indent_unit=4)
        assert lines == ["{{table}}", "    - A", "        - 1"]


class TestConvertAllTables:
    """Tests for convert_all_tables and has_markdown_table."""

    def test_convert_simple(self) -> None:
        """Test rewriting a whole-document table."""
        assert convert_all_tables(SIMPLE_TABLE) == (
            "{{table}}\n  - A\n    - 1\n    - 3\n  - B\n    - 2\n    - 4"
        )

    def test_surrounding_text_preserved(self) -> None:
        """Test that lines around the table are untouched."""
        text = "Intro\n| A |\n|---|\n| 1 |\nOutro"
        assert convert_all_tables(text) == "Intro\n{{table}}\n  - A\n    - 1\nOutro"

    def test_no_table_unchanged(self) -> None:
        """Test that text without tables is returned as is."""
        text = "- a\n  - b\n| not | a table |"
        assert convert_all_tables(text) == text

    def test_has_markdown_table(self) -> None:
        """Test table detection on whole text."""
        assert has_markdown_table(SIMPLE_TABLE)
        assert not has_markdown_table("| A |\n|---|")
        assert not has_markdown_table("plain text")
