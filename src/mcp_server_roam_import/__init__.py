"""MCP server for importing markdown into Roam Research."""
import logging
import sys

import click

from .markdown_utils import (
    MarkdownNode,
    convert_to_roam_markdown,
    markdown_to_actions,
    parse_markdown,
)
from .actions import BlockAction, convert_to_roam_actions
from .roam_api import (
    AuthenticationError,
    BlockNotFoundError,
    InvalidQueryError,
    PageNotFoundError,
    RateLimitError,
    RoamAPI,
    RoamAPIError,
)
from .server import serve

__all__ = [
    'main',
    'serve',
    'MarkdownNode',
    'BlockAction',
    'parse_markdown',
    'convert_to_roam_markdown',
    'convert_to_roam_actions',
    'markdown_to_actions',
    'RoamAPI',
    'RoamAPIError',
    'PageNotFoundError',
    'BlockNotFoundError',
    'AuthenticationError',
    'RateLimitError',
    'InvalidQueryError'
]


@click.command()
@click.option("-v", "--verbose", count=True)
def main(verbose: int) -> None:
    """Run the MCP Roam Import Server.

    Args:
        verbose: Verbosity level (0=WARN, 1=INFO, 2+=DEBUG).
    """
    import asyncio

    logging_level = logging.WARN
    if verbose == 1:
        logging_level = logging.INFO
    elif verbose >= 2:
        logging_level = logging.DEBUG

    logging.basicConfig(level=logging_level, stream=sys.stderr)
    asyncio.run(serve())


if __name__ == "__main__":  # pragma: no cover
    main()
