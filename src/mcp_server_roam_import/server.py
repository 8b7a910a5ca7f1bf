"""MCP server implementation for importing markdown into Roam Research."""

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field

from mcp_server_roam_import.actions import (
    BlockAction,
    Order,
    SequentialUidGenerator,
    convert_to_roam_actions,
)
from mcp_server_roam_import.config import Settings, load_settings
from mcp_server_roam_import.markdown_utils import (
    ClassifiedLine,
    MarkdownNode,
    build_tree,
    convert_to_roam_markdown,
    count_nodes,
    markdown_to_actions,
    normalize_inline,
    parse_markdown,
)
from mcp_server_roam_import.roam_api import (
    BlockNotFoundError,
    InvalidQueryError,
    PageNotFoundError,
    RoamAPI,
    RoamAPIError,
)
from mcp_server_roam_import.tables import has_markdown_table

logger = logging.getLogger(__name__)

# Singleton instances
_roam_client: RoamAPI | None = None
_settings: Settings | None = None

# Outline levels accepted by create_outline
MIN_OUTLINE_LEVEL = 1
MAX_OUTLINE_LEVEL = 10

# Placeholder parent for preview_markdown when none is given
PREVIEW_PARENT_UID = "preview-parent"


def get_settings() -> Settings:
    """Get or load the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_roam_client() -> RoamAPI:
    """Get or create the singleton RoamAPI client instance.

    Returns:
        The singleton RoamAPI client instance.
    """
    global _roam_client
    if _roam_client is None:
        settings = get_settings()
        _roam_client = RoamAPI(settings.api_token, settings.graph_name)
    return _roam_client


# Pydantic models for tool inputs
class FetchPageByTitle(BaseModel):
    """Input schema for fetch_page_by_title tool."""

    title: str


class CreatePage(BaseModel):
    """Input schema for create_page tool."""

    title: str
    content: str | None = None


class CreateBlock(BaseModel):
    """Input schema for create_block tool."""

    content: str
    page_uid: str | None = None
    title: str | None = None
    heading: int | None = Field(default=None, ge=1, le=3)


class ImportMarkdown(BaseModel):
    """Input schema for import_markdown tool."""

    content: str
    page_uid: str | None = None
    page_title: str | None = None
    parent_uid: str | None = None
    parent_string: str | None = None
    order: Order = "first"


class OutlineItem(BaseModel):
    """One line of an outline."""

    text: str
    level: int


class CreateOutline(BaseModel):
    """Input schema for create_outline tool."""

    outline: list[OutlineItem]
    page_title_uid: str | None = None
    block_text_uid: str | None = None


class AddTodos(BaseModel):
    """Input schema for add_todos tool."""

    todos: list[str]


class SearchByText(BaseModel):
    """Input schema for search_by_text tool."""

    text: str
    page_title: str | None = None
    limit: int = 20


class PreviewMarkdown(BaseModel):
    """Input schema for preview_markdown tool."""

    content: str
    order: Order = "last"
    parent_uid: str | None = None


def submit_actions(roam: RoamAPI, actions: list[BlockAction]) -> list[str]:
    """Submit block actions as one batch and return their UIDs.

    Raises:
        InvalidQueryError: If there are no actions to submit.
    """
    roam.batch_actions([action.to_roam() for action in actions])
    return [action.uid for action in actions]


def _no_blocks_error(what: str) -> str:
    return f"Error: {what} produced no blocks"


def _resolve_target_page(
    roam: RoamAPI, page_uid: str | None, title: str | None
) -> str:
    """Resolve a page UID from a UID, a title (created if missing), or today."""
    if page_uid:
        return page_uid
    if title:
        return roam.find_or_create_page(title)
    return roam.get_daily_page_uid()


def _build_content_nodes(
    content: str, heading: int | None, indent_unit: int
) -> list[MarkdownNode]:
    """Parse content, making its first line a heading block if requested."""
    if not heading:
        converted = convert_to_roam_markdown(content, indent_unit)
        return parse_markdown(converted, indent_unit)

    first_line, _, rest = content.strip().partition("\n")
    if not first_line:
        return []
    first = MarkdownNode(normalize_inline(first_line.strip()), 0, heading)
    rest = convert_to_roam_markdown(rest, indent_unit)
    return [first, *parse_markdown(rest, indent_unit)]


# Tool implementation functions
def fetch_page_by_title(title: str) -> str:
    """Retrieve a page's content as markdown.

    Args:
        title: Title of the page to fetch.

    Returns:
        Markdown-formatted page content with nesting and headings.
    """
    try:
        roam = get_roam_client()
        page_data = roam.get_page(title)

        markdown = f"# {title}\n\n"
        children = page_data.get(":block/children")
        if children:
            markdown += roam.process_blocks(children, 0)
        else:
            markdown += "(no content found)\n"

        return markdown
    except PageNotFoundError as e:
        return f"Error: {e}"
    except RoamAPIError as e:
        return f"Error fetching page: {e}"


def create_page(title: str, content: str | None = None) -> str:
    """Create a page (or reuse an existing one) and import markdown into it.

    Args:
        title: Page title.
        content: Optional markdown for the page body.

    Returns:
        Confirmation with the page UID and number of blocks created.
    """
    title = title.strip()
    if not title:
        return "Error: title must not be empty"

    try:
        roam = get_roam_client()
        settings = get_settings()
        page_uid = roam.find_or_create_page(title)

        if not content or not content.strip():
            return f"Page '{title}' ready\nPage UID: {page_uid}"

        actions = markdown_to_actions(
            content, page_uid, "last", indent_unit=settings.indent_unit
        )
        if not actions:
            return _no_blocks_error("content")

        submit_actions(roam, actions)
        return (
            f"Page '{title}' ready with {len(actions)} blocks\n"
            f"Page UID: {page_uid}"
        )

    except (TypeError, ValueError, InvalidQueryError) as e:
        return f"Error: Invalid input - {e}"
    except RoamAPIError as e:
        return f"Error creating page: {e}"


def create_block(
    content: str,
    page_uid: str | None = None,
    title: str | None = None,
    heading: int | None = None,
) -> str:
    """Add content to a page as one or more blocks.

    Multi-line content is imported as nested blocks. Without page_uid or
    title the content goes to today's daily note.

    Args:
        content: Block text or nested markdown.
        page_uid: Optional UID of the target page.
        title: Optional title of the target page (created if missing).
        heading: Optional heading level (1-3) for the first block.

    Returns:
        Confirmation with the first created block UID.
    """
    try:
        roam = get_roam_client()
        settings = get_settings()
        target_uid = _resolve_target_page(roam, page_uid, title)

        nodes = _build_content_nodes(content, heading, settings.indent_unit)
        actions = convert_to_roam_actions(nodes, target_uid, "last")
        if not actions:
            return _no_blocks_error("content")

        submit_actions(roam, actions)

        if len(actions) == 1:
            return f"Created block {actions[0].uid} with content: {actions[0].string}"
        return (
            f"Created {len(actions)} blocks under {target_uid}\n"
            f"Root block UID: {actions[0].uid}"
        )

    except (TypeError, ValueError, InvalidQueryError) as e:
        return f"Error: Invalid input - {e}"
    except RoamAPIError as e:
        return f"Error creating block: {e}"


def import_markdown(
    content: str,
    page_uid: str | None = None,
    page_title: str | None = None,
    parent_uid: str | None = None,
    parent_string: str | None = None,
    order: Order = "first",
) -> str:
    """Import nested markdown under a page or a block.

    The parent is resolved in this order: parent_uid, then the block on the
    page whose string equals parent_string, then the page itself. The page is
    resolved from page_uid, then page_title (must exist), then today's daily
    note.

    Args:
        content: Nested markdown to import.
        page_uid: Optional UID of the page.
        page_title: Optional title of an existing page.
        parent_uid: Optional UID of the parent block.
        parent_string: Optional exact string of the parent block on the page.
        order: Where to add the content under the parent ("first", "last" or
            an index).

    Returns:
        JSON with page_uid, parent_uid and created_uids.
    """
    try:
        roam = get_roam_client()
        settings = get_settings()

        target_page = page_uid
        if not target_page and page_title:
            target_page = roam.find_page_uid(page_title)
            if not target_page:
                raise PageNotFoundError(f"Page with title '{page_title}' not found")
        if not target_page and not parent_uid:
            target_page = roam.get_daily_page_uid()

        target_parent = parent_uid
        if not target_parent and parent_string:
            target_parent = roam.find_block_uid(target_page, parent_string)
        if not target_parent:
            target_parent = target_page

        actions = markdown_to_actions(
            content,
            target_parent,
            order,
            indent_unit=settings.indent_unit,
            sequential_roots=True,
        )
        if not actions:
            return _no_blocks_error("content")

        created_uids = submit_actions(roam, actions)
        return json.dumps(
            {
                "success": True,
                "page_uid": target_page,
                "parent_uid": target_parent,
                "created_uids": created_uids,
            },
            indent=2,
        )

    except (PageNotFoundError, BlockNotFoundError) as e:
        return f"Error: {e}"
    except (TypeError, ValueError, InvalidQueryError) as e:
        return f"Error: Invalid input - {e}"
    except RoamAPIError as e:
        return f"Error importing markdown: {e}"


def validate_outline(outline: list[dict[str, Any]]) -> list[tuple[str, int]]:
    """Validate outline items and return them as (text, level) pairs.

    Items without text are skipped. Levels must be within 1-10 and may not
    increase by more than one from the previous item.

    Raises:
        ValueError: If the outline is empty or malformed.
    """
    items = [
        item
        for item in outline
        if isinstance(item, dict) and item.get("text") is not None
    ]
    if not items:
        raise ValueError("outline must contain at least one item with text")

    validated: list[tuple[str, int]] = []
    prev_level = 0
    for index, item in enumerate(items):
        text = item["text"]
        level = item.get("level")
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"outline item {index} has empty text")
        if (
            isinstance(level, bool)
            or not isinstance(level, int)
            or not MIN_OUTLINE_LEVEL <= level <= MAX_OUTLINE_LEVEL
        ):
            raise ValueError(
                f"outline item {index} must have a level between "
                f"{MIN_OUTLINE_LEVEL} and {MAX_OUTLINE_LEVEL}"
            )
        if level > prev_level + 1:
            raise ValueError(
                f"Invalid outline structure - level {level} follows level {prev_level}"
            )
        validated.append((text.strip(), level))
        prev_level = level

    return validated


def create_outline(
    outline: list[dict[str, Any]],
    page_title_uid: str | None = None,
    block_text_uid: str | None = None,
) -> str:
    """Create an outline from items with explicit levels.

    Args:
        outline: Items with "text" and "level" (1 = top level).
        page_title_uid: Title or UID of the page. Defaults to today's daily note.
        block_text_uid: UID of an existing parent block, or text for a new
            header block that the outline is nested under.

    Returns:
        JSON with page_uid, parent_uid and created_uids.
    """
    try:
        items = validate_outline(outline)
    except ValueError as e:
        return f"Error: {e}"

    try:
        roam = get_roam_client()

        if not page_title_uid:
            target_page = roam.get_daily_page_uid()
        else:
            target_page = roam.find_page_uid(page_title_uid)
            if not target_page:
                if roam.uid_exists(page_title_uid):
                    target_page = page_title_uid
                else:
                    target_page = roam.create_page(page_title_uid)

        nodes = build_tree(
            ClassifiedLine(normalize_inline(text), level - 1) for text, level in items
        )

        target_parent = target_page
        header_created = False
        if block_text_uid:
            if roam.uid_exists(block_text_uid):
                target_parent = block_text_uid
            else:
                # New header block goes into the same batch as its children
                header = MarkdownNode(normalize_inline(block_text_uid), 0)
                header.children = nodes
                nodes = [header]
                header_created = True

        actions = convert_to_roam_actions(nodes, target_parent, "last")
        created_uids = submit_actions(roam, actions)

        if header_created:
            target_parent = created_uids[0]

        return json.dumps(
            {
                "success": True,
                "page_uid": target_page,
                "parent_uid": target_parent,
                "created_uids": created_uids,
            },
            indent=2,
        )

    except InvalidQueryError as e:
        return f"Error: Invalid input - {e}"
    except RoamAPIError as e:
        return f"Error creating outline: {e}"


def add_todos(todos: list[str]) -> str:
    """Add todo items as separate blocks on today's daily note.

    Args:
        todos: Todo texts.

    Returns:
        Confirmation with the daily note title and number of todos.
    """
    if not isinstance(todos, list):
        return "Error: todos must be a non-empty list of strings"

    items = [todo.strip() for todo in todos if isinstance(todo, str) and todo.strip()]
    if not items:
        return "Error: todos must be a non-empty list of strings"

    try:
        roam = get_roam_client()
        settings = get_settings()

        daily_title = roam.daily_note_title()
        page_uid = roam.find_or_create_page(daily_title)

        nodes = [
            MarkdownNode(f"{settings.todo_tag} {normalize_inline(item)}")
            for item in items
        ]
        actions = convert_to_roam_actions(nodes, page_uid, "last")
        submit_actions(roam, actions)

        return f"Added {len(actions)} todo(s) to {daily_title}"

    except InvalidQueryError as e:
        return f"Error: Invalid input - {e}"
    except RoamAPIError as e:
        return f"Error adding todos: {e}"


def search_by_text(text: str, page_title: str | None = None, limit: int = 20) -> str:
    """Search for blocks containing text (keyword search).

    Args:
        text: Text to search for (case-sensitive substring match).
        page_title: Optional page title to limit search scope.
        limit: Maximum number of results to return.

    Returns:
        Formatted search results with block content and page context.
    """
    try:
        roam = get_roam_client()
        results = roam.search_blocks_by_text(text, page_title, limit)

        if not results:
            scope = f" in page '{page_title}'" if page_title else ""
            return f"No blocks found containing '{text}'{scope}."

        output_lines = [f"# Text Search Results for: {text}\n"]
        if page_title:
            output_lines.append(f"**Scope:** {page_title}\n")
        output_lines.append(f"Found {len(results)} results:\n")

        for i, result in enumerate(results, 1):
            content = result["content"]
            if len(content) > 500:
                content = content[:500] + "..."
            output_lines.append(f"## {i}. {result.get('page_title') or 'Unknown'}")
            output_lines.append(content)
            output_lines.append(f"*UID: {result['uid']}*\n")

        return "\n".join(output_lines)

    except InvalidQueryError as e:
        return f"Error: Invalid search text - {e}"
    except RoamAPIError as e:
        return f"Error searching blocks: {e}"


def preview_markdown(
    content: str, order: Order = "last", parent_uid: str | None = None
) -> str:
    """Show the batch actions that importing content would submit.

    Nothing is written to Roam. UIDs are sequential placeholders.

    Args:
        content: Markdown to convert.
        order: Position for the top-level blocks.
        parent_uid: Parent UID to show in the actions.

    Returns:
        JSON with block_count, has_table (whether the content held a
        markdown table) and the actions in Roam write format.
    """
    try:
        settings = get_settings()
        converted = convert_to_roam_markdown(content, settings.indent_unit)
        nodes = parse_markdown(converted, settings.indent_unit)
        actions = convert_to_roam_actions(
            nodes,
            parent_uid or PREVIEW_PARENT_UID,
            order,
            uid_generator=SequentialUidGenerator("preview"),
        )
        if not actions:
            return _no_blocks_error("content")

        return json.dumps(
            {
                "block_count": count_nodes(nodes),
                "has_table": has_markdown_table(content),
                "actions": [action.to_roam() for action in actions],
            },
            indent=2,
        )
    except (TypeError, ValueError) as e:
        return f"Error: Invalid input - {e}"


# Create the server instance - this is what mcp dev looks for
server = Server("mcp-roam-import")


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return list of available tools.

    Returns:
        List of Tool objects describing available MCP tools.
    """
    return [
        Tool(
            name="fetch_page_by_title",
            description="Retrieve a page's content as nested markdown",
            inputSchema=FetchPageByTitle.model_json_schema(),
        ),
        Tool(
            name="create_page",
            description=(
                "Create a page from markdown. Headings, nested lists and "
                "markdown tables become nested Roam blocks."
            ),
            inputSchema=CreatePage.model_json_schema(),
        ),
        Tool(
            name="create_block",
            description=(
                "Add a block to a page (by UID or title) or to today's daily "
                "note. Multi-line content is imported as nested blocks."
            ),
            inputSchema=CreateBlock.model_json_schema(),
        ),
        Tool(
            name="import_markdown",
            description=(
                "Import nested markdown under a page or block. The parent "
                "block can be given by UID or by exact string on the page."
            ),
            inputSchema=ImportMarkdown.model_json_schema(),
        ),
        Tool(
            name="create_outline",
            description=(
                "Create an outline from items with explicit levels "
                "(1 = top level), optionally under a header block"
            ),
            inputSchema=CreateOutline.model_json_schema(),
        ),
        Tool(
            name="add_todos",
            description="Add todo items as blocks on today's daily note",
            inputSchema=AddTodos.model_json_schema(),
        ),
        Tool(
            name="search_by_text",
            description="Search blocks by text (keyword/substring search)",
            inputSchema=SearchByText.model_json_schema(),
        ),
        Tool(
            name="preview_markdown",
            description=(
                "Show the Roam batch actions that importing markdown would "
                "create, without writing anything"
            ),
            inputSchema=PreviewMarkdown.model_json_schema(),
        ),
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls.

    Args:
        name: The name of the tool to call.
        arguments: The arguments to pass to the tool.

    Returns:
        List of TextContent objects with the tool result.

    Raises:
        ValueError: If the tool name is unknown.
    """
    match name:
        case "fetch_page_by_title":
            result = fetch_page_by_title(arguments["title"])
        case "create_page":
            result = create_page(arguments["title"], arguments.get("content"))
        case "create_block":
            result = create_block(
                arguments["content"],
                arguments.get("page_uid"),
                arguments.get("title"),
                arguments.get("heading"),
            )
        case "import_markdown":
            result = import_markdown(
                arguments["content"],
                arguments.get("page_uid"),
                arguments.get("page_title"),
                arguments.get("parent_uid"),
                arguments.get("parent_string"),
                arguments.get("order", "first"),
            )
        case "create_outline":
            result = create_outline(
                arguments["outline"],
                arguments.get("page_title_uid"),
                arguments.get("block_text_uid"),
            )
        case "add_todos":
            result = add_todos(arguments["todos"])
        case "search_by_text":
            result = search_by_text(
                arguments["text"],
                arguments.get("page_title"),
                arguments.get("limit", 20),
            )
        case "preview_markdown":
            result = preview_markdown(
                arguments["content"],
                arguments.get("order", "last"),
                arguments.get("parent_uid"),
            )
        case _:
            raise ValueError(f"Unknown tool: {name}")

    return [TextContent(type="text", text=str(result))]


async def serve() -> None:
    """Initialize and run the MCP server.

    This is the main entry point for running the server via stdio transport.
    """
    options = server.create_initialization_options()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, options, raise_exceptions=True)
