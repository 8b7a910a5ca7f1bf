"""Detection and rewriting of pipe-delimited markdown tables.

Roam has no pipe-table syntax. It renders a ``{{table}}`` block whose nested
bullets form the columns, so every markdown table is rewritten into that shape
before the text is parsed into blocks.
"""

import logging
import re
from typing import NamedTuple

logger = logging.getLogger(__name__)

# Marker block that Roam renders as a table widget
TABLE_MARKER = "{{table}}"

# Separator cells look like ---, :---, ---: or :---:
_SEPARATOR_CELL_PATTERN = re.compile(r"^:?-+:?$")


class MarkdownTable(NamedTuple):
    """A table located in a list of lines.

    Attributes:
        start: Index of the header row.
        end: Index one past the last data row.
        header: Header cell texts.
        rows: Data rows, each a list of cell texts.
    """

    start: int
    end: int
    header: list[str]
    rows: list[list[str]]


def _is_row(line: str) -> bool:
    stripped = line.strip()
    return len(stripped) >= 2 and stripped.startswith("|") and stripped.endswith("|")


def _split_row(line: str) -> list[str]:
    """Split a table row into trimmed cell texts."""
    return [cell.strip() for cell in line.strip()[1:-1].split("|")]


def _is_separator(line: str) -> bool:
    if not _is_row(line):
        return False
    return all(_SEPARATOR_CELL_PATTERN.match(cell) for cell in _split_row(line))


def find_tables(lines: list[str]) -> list[MarkdownTable]:
    """Locate every table in a list of lines.

    Scans for a header row, then a separator row, then consumes data rows
    until the first line that is not a table row. A header and separator with
    no data rows is not a table.

    Args:
        lines: The text split into lines.

    Returns:
        Tables in document order. Tables never overlap.
    """
    tables: list[MarkdownTable] = []
    i = 0
    while i + 2 < len(lines):
        header_line = lines[i]
        if not _is_row(header_line) or _is_separator(header_line):
            i += 1
            continue
        if not _is_separator(lines[i + 1]):
            i += 1
            continue

        rows: list[list[str]] = []
        end = i + 2
        while end < len(lines) and _is_row(lines[end]):
            rows.append(_split_row(lines[end]))
            end += 1

        if not rows:
            i += 2
            continue

        tables.append(MarkdownTable(i, end, _split_row(header_line), rows))
        i = end

    return tables


def render_table(
    header: list[str], rows: list[list[str]], indent_unit: int = 2
) -> list[str]:
    """Render a table as Roam's nested-bullet table encoding.

    Each header cell becomes a bullet one level under the marker. Cells of
    the same column are nested one level deeper under their header, in row
    order. Missing or empty cells produce no bullet.

    Args:
        header: Header cell texts.
        rows: Data rows.
        indent_unit: Spaces per nesting level.

    Returns:
        The replacement lines, starting with the table marker.
    """
    pad = " " * indent_unit
    lines = [TABLE_MARKER]

    for col, title in enumerate(header):
        lines.append(f"{pad}- {title}")
        for row in rows:
            if col < len(row) and row[col]:
                lines.append(f"{pad * 2}- {row[col]}")

    for row_index, row in enumerate(rows):
        if len(row) > len(header):
            logger.debug(
                "Dropping %d cell(s) beyond header width in table row %d",
                len(row) - len(header),
                row_index + 1,
            )

    return lines


def convert_all_tables(text: str, indent_unit: int = 2) -> str:
    """Rewrite every markdown table in text into Roam's table encoding.

    Lines outside tables are left untouched.

    Args:
        text: Markdown text.
        indent_unit: Spaces per nesting level in the rendered bullets.

    Returns:
        The text with tables replaced in place.
    """
    lines = text.split("\n")
    tables = find_tables(lines)
    if not tables:
        return text

    result: list[str] = []
    cursor = 0
    for table in tables:
        result.extend(lines[cursor : table.start])
        result.extend(render_table(table.header, table.rows, indent_unit))
        cursor = table.end
    result.extend(lines[cursor:])

    logger.debug("Converted %d markdown table(s)", len(tables))
    return "\n".join(result)


def has_markdown_table(text: str) -> bool:
    """Check whether text contains at least one markdown table."""
    return bool(find_tables(text.split("\n")))
