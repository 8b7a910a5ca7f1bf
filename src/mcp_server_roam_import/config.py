"""Runtime settings loaded from the environment."""

import logging
import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_INDENT_UNIT = 2
DEFAULT_TODO_TAG = "{{[[TODO]]}}"


class Settings(BaseModel):
    """Server settings.

    Attributes:
        api_token: Roam API token (ROAM_API_TOKEN).
        graph_name: Roam graph name (ROAM_GRAPH_NAME).
        indent_unit: Spaces per nesting level in imported markdown
            (ROAM_INDENT_UNIT).
        todo_tag: Prefix for blocks created by add_todos (ROAM_TODO_TAG).
    """

    api_token: str | None = None
    graph_name: str | None = None
    indent_unit: int = Field(default=DEFAULT_INDENT_UNIT, ge=1, le=8)
    todo_tag: str = DEFAULT_TODO_TAG


def load_settings() -> Settings:
    """Load settings from a .env file and the process environment.

    Raises:
        pydantic.ValidationError: If a value is present but invalid.
    """
    load_dotenv()

    settings = Settings(
        api_token=os.getenv("ROAM_API_TOKEN"),
        graph_name=os.getenv("ROAM_GRAPH_NAME"),
        indent_unit=os.getenv("ROAM_INDENT_UNIT") or DEFAULT_INDENT_UNIT,
        todo_tag=os.getenv("ROAM_TODO_TAG") or DEFAULT_TODO_TAG,
    )

    if not settings.api_token or not settings.graph_name:
        logger.warning(
            "ROAM_API_TOKEN or ROAM_GRAPH_NAME not set; "
            "tools that call Roam will fail until they are configured"
        )

    return settings
