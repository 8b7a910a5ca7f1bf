"""Conversion of markdown text into Roam block hierarchies.

The pipeline is: inline style rewriting, table rewriting, per-line
classification, tree building, and finally linearization into batch actions
(see ``actions.py``).
"""

import logging
import re
from collections.abc import Iterable, Iterator
from typing import NamedTuple

from mcp_server_roam_import.actions import (
    BlockAction,
    Order,
    UidGenerator,
    convert_to_roam_actions,
)
from mcp_server_roam_import.tables import TABLE_MARKER, convert_all_tables

logger = logging.getLogger(__name__)

# Default indentation: 2 spaces = 1 level
DEFAULT_INDENT_UNIT = 2

# Roam-native inline markers
ROAM_ITALIC = "__"
ROAM_HIGHLIGHT = "^^"
ROAM_TODO = "{{[[TODO]]}}"
ROAM_DONE = "{{[[DONE]]}}"

_HEADING_PATTERN = re.compile(r"^(#+)\s+(.*?)(?:\s+#+)?$")
_LIST_MARKER_PATTERN = re.compile(r"^(?:[-*+]|\d+\.)(?:\s+|$)")
_LINE_PREFIX_PATTERN = re.compile(r"^(\s*(?:[-*+]|\d+\.)\s+)(.*)$")

# Single markers only: never adjacent to another marker of the same kind
_ITALIC_ASTERISK_PATTERN = re.compile(r"(?<!\*)\*(?![\s*])(.+?)(?<![\s*])\*(?!\*)")
_ITALIC_UNDERSCORE_PATTERN = re.compile(r"(?<!\w)_(?![\s_])(.+?)(?<![\s_])_(?!\w)")
_HIGHLIGHT_PATTERN = re.compile(r"==(.+?)==")
_TODO_PATTERN = re.compile(r"^\[ \]")
_DONE_PATTERN = re.compile(r"^\[[xX]\]")


class MarkdownNode:
    """Represents a node in the markdown hierarchy."""

    def __init__(
        self, content: str, level: int = 0, heading_level: int | None = None
    ) -> None:
        self.content = content
        self.level = level
        self.heading_level = heading_level
        self.children: list[MarkdownNode] = []

    def __repr__(self) -> str:
        return (
            f"MarkdownNode({self.content!r}, level={self.level}, "
            f"heading_level={self.heading_level}, children={len(self.children)})"
        )


class ClassifiedLine(NamedTuple):
    """One non-empty line after marker stripping."""

    content: str
    level: int
    heading_level: int | None = None
    is_anchor: bool = False


def _check_indent_unit(indent_unit: int) -> None:
    if isinstance(indent_unit, bool) or not isinstance(indent_unit, int):
        raise TypeError(f"indent_unit must be an int, got {type(indent_unit).__name__}")
    if indent_unit < 1:
        raise ValueError(f"indent_unit must be at least 1, got {indent_unit}")


def _is_bold_label(text: str) -> bool:
    return len(text) > 4 and text.startswith("**") and text.endswith("**")


def classify_line(
    line: str, indent_unit: int = DEFAULT_INDENT_UNIT
) -> ClassifiedLine | None:
    """Classify a single line without regard to its neighbours.

    Headings, table markers and unindented bold-wrapped lines are anchors:
    they are always placed at level 0.

    Args:
        line: Raw line, leading whitespace preserved.
        indent_unit: Spaces per nesting level. Tabs expand to one level.

    Returns:
        The classified line, or None for a blank line.
    """
    line = line.rstrip()
    if not line:
        return None

    text = line.lstrip()
    indent = len(line[: len(line) - len(text)].expandtabs(indent_unit))

    heading = _HEADING_PATTERN.match(text)
    if heading:
        return ClassifiedLine(heading.group(2), 0, len(heading.group(1)), True)

    content = _LIST_MARKER_PATTERN.sub("", text, count=1)

    if TABLE_MARKER in text:
        return ClassifiedLine(content, 0, None, True)

    if indent == 0 and _is_bold_label(text):
        return ClassifiedLine(text, 0, None, True)

    return ClassifiedLine(content, indent // indent_unit)


class LineClassifier:
    """Classify lines in sequence, tracking the active anchor.

    Once an anchor (heading, table marker or bold label) has been seen, every
    following non-anchor line is placed at level 1 or deeper so it nests under
    the anchor. If the first line after an anchor is unindented, the whole
    section is shifted one level down to keep its own nesting intact.

    A table marker is the exception: its rows are always indented, so the
    first unindented line after it closes the table and starts a new root.
    """

    def __init__(self, indent_unit: int = DEFAULT_INDENT_UNIT) -> None:
        _check_indent_unit(indent_unit)
        self.indent_unit = indent_unit
        self._anchor_active = False
        self._anchor_is_table = False
        self._anchor_offset: int | None = None

    def classify(self, line: str) -> ClassifiedLine | None:
        classified = classify_line(line, self.indent_unit)
        if classified is None:
            return None

        if classified.is_anchor:
            self._anchor_active = True
            self._anchor_is_table = TABLE_MARKER in classified.content
            self._anchor_offset = None
            return classified

        if self._anchor_is_table and classified.level == 0:
            self._anchor_active = False
            self._anchor_is_table = False

        if not self._anchor_active:
            return classified

        if self._anchor_offset is None:
            self._anchor_offset = 1 if classified.level == 0 else 0
        level = max(classified.level + self._anchor_offset, 1)
        return classified._replace(level=level)


def classify_lines(
    text: str, indent_unit: int = DEFAULT_INDENT_UNIT
) -> Iterator[ClassifiedLine]:
    """Yield classified lines for every non-blank line of text."""
    classifier = LineClassifier(indent_unit)
    for line in text.split("\n"):
        classified = classifier.classify(line)
        if classified is not None:
            yield classified


class TreeBuilder:
    """Assemble classified lines into a forest of MarkdownNodes.

    ``open_nodes[i]`` holds the most recent node at level i. A line deeper
    than ``len(open_nodes)`` is clamped to attach under the deepest open node,
    so malformed indentation never raises or drops a line.
    """

    def __init__(self) -> None:
        self.roots: list[MarkdownNode] = []
        self.open_nodes: list[MarkdownNode] = []

    def add(self, line: ClassifiedLine) -> MarkdownNode:
        node = MarkdownNode(line.content, line.level, line.heading_level)
        level = line.level

        if level > 0 and not self.open_nodes:
            logger.debug("No open parent for %r, placing at top level", line.content)
            level = 0

        if level == 0:
            node.level = 0
            self.roots.append(node)
            self.open_nodes = [node]
            return node

        if level > len(self.open_nodes):
            logger.debug(
                "Clamping level %d to %d for %r",
                level,
                len(self.open_nodes),
                line.content,
            )
            level = len(self.open_nodes)

        parent = self.open_nodes[level - 1]
        parent.children.append(node)
        node.level = level
        del self.open_nodes[level:]
        self.open_nodes.append(node)
        return node


def build_tree(lines: Iterable[ClassifiedLine]) -> list[MarkdownNode]:
    """Build the root forest from classified lines."""
    builder = TreeBuilder()
    for line in lines:
        builder.add(line)
    return builder.roots


def parse_markdown(
    markdown: str, indent_unit: int = DEFAULT_INDENT_UNIT
) -> list[MarkdownNode]:
    """Parse markdown text into a hierarchical structure of nodes.

    Args:
        markdown: Markdown text, already converted to Roam inline syntax.
        indent_unit: Spaces per nesting level.

    Returns:
        Root nodes in document order. Blank input gives an empty list.

    Raises:
        TypeError: If markdown is not a string.
    """
    if not isinstance(markdown, str):
        raise TypeError(f"markdown must be a string, got {type(markdown).__name__}")
    return build_tree(classify_lines(markdown, indent_unit))


def normalize_inline(text: str) -> str:
    """Rewrite inline emphasis and highlights into Roam syntax.

    ``**bold**`` is already Roam syntax and is left alone. ``*x*`` and ``_x_``
    become ``__x__``; ``==x==`` becomes ``^^x^^``.
    """
    text = _ITALIC_ASTERISK_PATTERN.sub(rf"{ROAM_ITALIC}\1{ROAM_ITALIC}", text)
    text = _ITALIC_UNDERSCORE_PATTERN.sub(rf"{ROAM_ITALIC}\1{ROAM_ITALIC}", text)
    text = _HIGHLIGHT_PATTERN.sub(rf"{ROAM_HIGHLIGHT}\1{ROAM_HIGHLIGHT}", text)
    return text


def _convert_line(line: str) -> str:
    match = _LINE_PREFIX_PATTERN.match(line)
    if not match:
        return normalize_inline(line)

    prefix, rest = match.groups()
    # Task checkboxes only exist on list items
    rest = _TODO_PATTERN.sub(ROAM_TODO, rest, count=1)
    rest = _DONE_PATTERN.sub(ROAM_DONE, rest, count=1)
    return prefix + normalize_inline(rest)


def convert_to_roam_markdown(text: str, indent_unit: int = DEFAULT_INDENT_UNIT) -> str:
    """Convert standard markdown to Roam-flavored markdown.

    List markers are kept out of the emphasis rewrite, so ``* item`` stays a
    bullet. Tables are rewritten last, on the already-converted text.

    Args:
        text: Standard markdown.
        indent_unit: Spaces per level used when rendering tables.

    Returns:
        Roam-flavored markdown.
    """
    if not isinstance(text, str):
        raise TypeError(f"text must be a string, got {type(text).__name__}")
    text = "\n".join(_convert_line(line) for line in text.split("\n"))
    return convert_all_tables(text, indent_unit)


def markdown_to_actions(
    text: str,
    parent_uid: str,
    order: Order = "last",
    *,
    indent_unit: int = DEFAULT_INDENT_UNIT,
    uid_generator: UidGenerator | None = None,
    sequential_roots: bool = False,
) -> list[BlockAction]:
    """Run the full conversion from markdown text to batch actions.

    Args:
        text: Standard markdown.
        parent_uid: UID of the existing page or block to insert under.
        order: Position for the top-level blocks.
        indent_unit: Spaces per nesting level.
        uid_generator: UID source for the batch.
        sequential_roots: Spread top-level positions (see
            ``convert_to_roam_actions``).

    Returns:
        Ordered create-block actions. Blank text gives an empty list.

    Raises:
        TypeError: If text is not a string.
        ValueError: If parent_uid, order or indent_unit is invalid.
    """
    _check_indent_unit(indent_unit)
    converted = convert_to_roam_markdown(text, indent_unit)
    nodes = parse_markdown(converted, indent_unit)
    return convert_to_roam_actions(
        nodes,
        parent_uid,
        order,
        uid_generator=uid_generator,
        sequential_roots=sequential_roots,
    )


def to_markdown(
    nodes: Iterable[MarkdownNode],
    indent_unit: int = DEFAULT_INDENT_UNIT,
    depth: int = 0,
) -> str:
    """Print a forest back to indented markdown.

    Headings are written with ``#`` prefixes, everything else as ``- `` bullets.
    """
    lines: list[str] = []
    indent = " " * (indent_unit * depth)

    for node in nodes:
        if node.heading_level:
            lines.append(f"{indent}{'#' * node.heading_level} {node.content}")
        else:
            lines.append(f"{indent}- {node.content}")

        if node.children:
            lines.append(to_markdown(node.children, indent_unit, depth + 1))

    return "\n".join(lines)


def count_nodes(nodes: Iterable[MarkdownNode]) -> int:
    """Count nodes including nested children."""
    return sum(1 + count_nodes(node.children) for node in nodes)
