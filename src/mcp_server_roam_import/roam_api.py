"""Interface to the Roam Research API."""

import functools
import logging
import os
import re
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

import requests

from mcp_server_roam_import.actions import generate_uid

logger = logging.getLogger(__name__)

# Type variable for generic retry decorator
T = TypeVar("T")

# Retry configuration constants
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
BACKOFF_MULTIPLIER = 2.0
MAX_BACKOFF_SECONDS = 16.0

# API configuration constants
DEFAULT_SEARCH_LIMIT = 20
REQUEST_TIMEOUT_SECONDS = 30
RATE_LIMIT_RETRIES = 3
RATE_LIMIT_INITIAL_BACKOFF = 10.0  # Roam rate limit is 50 req/min, so wait longer


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    initial_backoff: float = INITIAL_BACKOFF_SECONDS,
    backoff_multiplier: float = BACKOFF_MULTIPLIER,
    max_backoff: float = MAX_BACKOFF_SECONDS,
    retryable_exceptions: tuple[type[Exception], ...] = (
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
    ),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts.
        initial_backoff: Initial backoff time in seconds.
        backoff_multiplier: Multiplier for each subsequent backoff.
        max_backoff: Maximum backoff time in seconds.
        retryable_exceptions: Tuple of exception types that trigger a retry.

    Returns:
        Decorated function with retry logic.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            last_exception: Exception | None = None
            backoff = initial_backoff

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e
                    if attempt < max_retries:
                        logger.warning(
                            "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries + 1,
                            e,
                            backoff,
                        )
                        time.sleep(backoff)
                        backoff = min(backoff * backoff_multiplier, max_backoff)
                    else:
                        logger.error(
                            "All %d attempts failed. Last error: %s",
                            max_retries + 1,
                            e,
                        )

            if last_exception:
                raise last_exception
            raise RuntimeError("Retry logic failed unexpectedly")  # pragma: no cover

        return wrapper

    return decorator


def ordinal_suffix(day: int) -> str:
    """Return ordinal suffix (st, nd, rd, th) for a day number.

    Args:
        day: The day of the month (1-31).

    Returns:
        The ordinal suffix string ('st', 'nd', 'rd', or 'th').
    """
    if day in (1, 21, 31):
        return "st"
    if day in (2, 22):
        return "nd"
    if day in (3, 23):
        return "rd"
    return "th"


def format_roam_date(date: datetime) -> str:
    """Format a date as a Roam daily note title, e.g. "October 19th, 2026"."""
    return f"{date:%B} {date.day}{ordinal_suffix(date.day)}, {date.year}"


# Custom Exception Classes
class RoamAPIError(Exception):
    """Base exception for all Roam API errors.

    This is the parent class for all exceptions raised by the Roam API client.
    Catch this to handle any Roam-related error.
    """


class PageNotFoundError(RoamAPIError):
    """Raised when a requested page is not found in the Roam graph."""


class BlockNotFoundError(RoamAPIError):
    """Raised when a requested block is not found in the Roam graph."""


class AuthenticationError(RoamAPIError):
    """Raised when authentication with the Roam API fails."""


class RateLimitError(RoamAPIError):
    """Raised when the Roam API rate limit is exceeded."""


class InvalidQueryError(RoamAPIError):
    """Raised when a query or request to the Roam API is invalid."""


class RoamAPI:
    """Client for interacting with the Roam Research API."""

    @staticmethod
    def _sanitize_query_input(value: str) -> str:
        """Sanitize user input before interpolating into Datalog queries.

        Double quotes are escaped by doubling them (EDN/Datalog standard), and
        input containing null bytes or Datalog clause syntax is rejected.

        Args:
            value: The string value to sanitize

        Returns:
            Sanitized string safe for use in Datalog queries

        Raises:
            InvalidQueryError: If input contains suspicious patterns or control
                characters.
        """
        if not isinstance(value, str):
            msg = f"Input must be a string, got {type(value).__name__}"
            raise InvalidQueryError(msg)

        if "\x00" in value:
            raise InvalidQueryError("Input contains null bytes")

        # These patterns are unusual in normal page titles/UIDs
        suspicious_patterns = [
            r"\[:find",  # Datalog find clause
            r"\[:where",  # Datalog where clause
            r"\[\?[a-z]",  # Logic variables (e.g., [?e, [?b)
        ]

        for pattern in suspicious_patterns:
            if re.search(pattern, value, re.IGNORECASE):
                raise InvalidQueryError(f"Input contains suspicious pattern: {pattern}")

        return value.replace('"', '""')

    def __init__(
        self, api_token: str | None = None, graph_name: str | None = None
    ) -> None:
        """Initialize the Roam API client.

        Args:
            api_token: Roam API token. If None, reads from ROAM_API_TOKEN env var.
            graph_name: Roam graph name. If None, reads from ROAM_GRAPH_NAME env var.

        Raises:
            AuthenticationError: If API token or graph name is not provided.
        """
        resolved_token = api_token or os.getenv("ROAM_API_TOKEN")
        resolved_graph = graph_name or os.getenv("ROAM_GRAPH_NAME")

        if not resolved_token:
            raise AuthenticationError(
                "Roam API token not provided and ROAM_API_TOKEN env var not set"
            )
        if not resolved_graph:
            raise AuthenticationError(
                "Roam graph name not provided and ROAM_GRAPH_NAME env var not set"
            )

        self.api_token: str = resolved_token
        self.graph_name: str = resolved_graph
        self._redirect_cache: dict[str, str] = {}
        logger.info("Initialized RoamAPI client for graph: %s", self.graph_name)

    def _mask_token(self, token: str) -> str:
        """Mask a token for logging, showing first/last 4 chars if long enough."""
        if len(token) > 8:
            return f"{token[:4]}...{token[-4:]}"
        return "***"

    @retry_with_backoff(
        retryable_exceptions=(
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            requests.exceptions.ChunkedEncodingError,
        )
    )
    def _make_request(
        self, url: str, headers: dict[str, str], body: dict[str, Any]
    ) -> requests.Response:
        """Make an HTTP POST request with retry logic for transient errors."""
        return requests.post(
            url,
            headers=headers,
            json=body,
            allow_redirects=False,
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def call(self, path: str, body: dict[str, Any]) -> requests.Response:
        """Make an API call to Roam, following redirects if necessary.

        Rate limit errors (HTTP 429) are retried with exponential backoff.

        Args:
            path: API endpoint path.
            body: Request body data.

        Returns:
            Response object.

        Raises:
            InvalidQueryError: If the request is rejected (HTTP 400) or a
                redirect cannot be followed.
            AuthenticationError: If authentication fails (HTTP 401).
            RateLimitError: If rate limit is exceeded after all retries.
            RoamAPIError: For other API errors (HTTP 500, etc).
        """
        backoff = RATE_LIMIT_INITIAL_BACKOFF
        last_rate_limit_error: RateLimitError | None = None

        for attempt in range(RATE_LIMIT_RETRIES + 1):
            try:
                return self._call_once(path, body)
            except RateLimitError as e:
                last_rate_limit_error = e
                if attempt < RATE_LIMIT_RETRIES:
                    logger.warning(
                        "Rate limit hit (attempt %d/%d). Waiting %.1fs before retry...",
                        attempt + 1,
                        RATE_LIMIT_RETRIES + 1,
                        backoff,
                    )
                    time.sleep(backoff)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS * 4)
                else:
                    logger.error(
                        "Rate limit exceeded after %d attempts", RATE_LIMIT_RETRIES + 1
                    )

        if last_rate_limit_error:
            raise last_rate_limit_error
        raise RuntimeError("Rate limit retry failed")  # pragma: no cover

    def _call_once(self, path: str, body: dict[str, Any]) -> requests.Response:
        """Make a single API call to Roam (internal method)."""
        base_url = self._redirect_cache.get(
            self.graph_name, "https://api.roamresearch.com"
        )
        url = base_url + path
        headers = {
            "Content-Type": "application/json; charset=utf-8",
            "Authorization": f"Bearer {self.api_token}",
            "x-authorization": f"Bearer {self.api_token}",
        }

        logger.debug("Making POST request to: %s", url)
        masked_token = self._mask_token(self.api_token)
        logger.debug("Request headers: Authorization: Bearer %s", masked_token)

        resp = self._make_request(url, headers, body)

        # Handle redirects manually to cache the peer URL
        if resp.is_redirect or resp.status_code == 307:
            if "Location" not in resp.headers:
                msg = f"Redirect without Location header: {resp.headers}"
                raise InvalidQueryError(msg)

            location = resp.headers["Location"]
            logger.info("Received redirect to: %s", location)

            match = re.search(r"https://(peer-\d+).*?:(\d+)", location)
            if not match:
                raise InvalidQueryError(f"Could not parse redirect URL: {location}")

            peer, port = match.groups()
            redirect_url = f"https://{peer}.api.roamresearch.com:{port}"
            self._redirect_cache[self.graph_name] = redirect_url
            logger.info("Cached redirect URL: %s", redirect_url)
            return self._call_once(path, body)

        if not resp.ok:
            logger.error("Error response status: %s", resp.status_code)
            logger.error("Error response body: %s", resp.text)
            if resp.status_code == 500:
                raise RoamAPIError(f"Server error (HTTP 500): {resp.text!s}")
            elif resp.status_code == 400:
                raise InvalidQueryError(f"Bad request (HTTP 400): {resp.text!s}")
            elif resp.status_code == 401:
                raise AuthenticationError(
                    "Authentication error (HTTP 401): Invalid token"
                )
            elif resp.status_code == 429:
                raise RateLimitError(f"Rate limit exceeded (HTTP 429): {resp.text}")
            else:
                raise RoamAPIError(
                    f"Service unavailable (HTTP {resp.status_code}): "
                    "Your graph may not be ready yet, please retry."
                )

        return resp

    def run_query(self, query: str, args: list[Any] | None = None) -> list[Any]:
        """Run a Datalog query on the Roam graph.

        Args:
            query: Datalog query string.
            args: Optional arguments for the query.

        Returns:
            Query results.
        """
        path = f"/api/graph/{self.graph_name}/q"
        body: dict[str, Any] = {"query": query}
        if args is not None:
            body["args"] = args

        resp = self.call(path, body)
        return resp.json().get("result", [])

    def pull(self, eid: Any, pattern: str = "[*]") -> dict[str, Any]:
        """Get an entity by its ID using a pull pattern."""
        path = f"/api/graph/{self.graph_name}/pull"
        body = {"eid": eid, "selector": pattern}
        resp = self.call(path, body)
        return resp.json().get("result", {})

    def write(self, body: dict[str, Any]) -> dict[str, Any]:
        """Submit a write action.

        The write endpoint usually answers with an empty body; that is
        returned as an empty dict.

        Args:
            body: A single write action (create-page, create-block,
                batch-actions, ...).

        Returns:
            Parsed response body, or an empty dict.
        """
        path = f"/api/graph/{self.graph_name}/write"
        resp = self.call(path, body)
        if not resp.text or not resp.text.strip():
            return {}
        try:
            return resp.json()
        except ValueError:
            logger.debug("Non-JSON write response: %s", resp.text)
            return {}

    def batch_actions(self, actions: list[dict[str, Any]]) -> dict[str, Any]:
        """Submit a list of write actions as one batch.

        Actions may refer to UIDs created by earlier actions in the same batch.

        Args:
            actions: Write actions in the Roam wire format.

        Returns:
            Parsed response body, or an empty dict.

        Raises:
            InvalidQueryError: If actions is empty.
        """
        if not actions:
            raise InvalidQueryError("Batch contains no actions")

        logger.info("Submitting batch of %d actions", len(actions))
        return self.write({"action": "batch-actions", "actions": actions})

    def create_page(self, title: str, uid: str | None = None) -> str:
        """Create a page with a client-chosen UID.

        Args:
            title: Page title.
            uid: UID for the new page. Generated when omitted.

        Returns:
            The UID of the new page.
        """
        page_uid = uid or generate_uid()
        self.write({"action": "create-page", "page": {"title": title, "uid": page_uid}})
        logger.info("Created page '%s' with UID %s", title, page_uid)
        return page_uid

    def find_page_uid(self, title: str) -> str | None:
        """Look up a page UID by exact title.

        Returns:
            The page UID, or None if no page has that title.
        """
        sanitized_title = self._sanitize_query_input(title)
        query = (
            f'[:find ?uid :where [?e :node/title "{sanitized_title}"] '
            "[?e :block/uid ?uid]]"
        )
        results = self.run_query(query)
        if not results:
            return None
        return results[0][0]

    def find_or_create_page(self, title: str) -> str:
        """Return the UID of the page with this title, creating it if needed."""
        page_uid = self.find_page_uid(title)
        if page_uid:
            return page_uid
        return self.create_page(title)

    def uid_exists(self, uid: str) -> bool:
        """Check whether any page or block has this UID."""
        sanitized_uid = self._sanitize_query_input(uid)
        query = f'[:find ?e :where [?e :block/uid "{sanitized_uid}"]]'
        return bool(self.run_query(query))

    def find_block_uid(self, page_uid: str, block_string: str) -> str:
        """Find a block on a page by its exact string.

        Args:
            page_uid: UID of the page to search.
            block_string: Exact block content.

        Returns:
            UID of the first matching block.

        Raises:
            BlockNotFoundError: If no block on the page has that string.
        """
        sanitized_page = self._sanitize_query_input(page_uid)
        sanitized_string = self._sanitize_query_input(block_string)
        query = f"""[:find ?uid
                     :where
                     [?p :block/uid "{sanitized_page}"]
                     [?b :block/page ?p]
                     [?b :block/string "{sanitized_string}"]
                     [?b :block/uid ?uid]]"""
        results = self.run_query(query)
        if not results:
            raise BlockNotFoundError(
                f"Block with content '{block_string}' not found on page {page_uid}"
            )
        return results[0][0]

    def daily_note_title(self, date: datetime | None = None) -> str:
        """Title of the daily note page for a date (default: today)."""
        return format_roam_date(date or datetime.now())

    def get_daily_page_uid(self) -> str:
        """Return the UID of today's daily note page, creating it if needed."""
        return self.find_or_create_page(self.daily_note_title())

    def get_page(self, page_title: str) -> dict[str, Any]:
        """Get a page by its title, with all nested blocks.

        Raises:
            PageNotFoundError: If the page with the specified title is not found.
            InvalidQueryError: If the title contains invalid patterns.
        """
        sanitized_title = self._sanitize_query_input(page_title)

        query = f'[:find ?e :where [?e :node/title "{sanitized_title}"]]'
        results = self.run_query(query)

        if not results:
            raise PageNotFoundError(f"Page with title '{page_title}' not found")

        # The ... notation means "recursively pull this pattern"
        eid = results[0][0]
        return self.pull(eid, "[* {:block/children ...}]")

    def search_blocks_by_text(
        self, text: str, page_title: str | None = None, limit: int = DEFAULT_SEARCH_LIMIT
    ) -> list[dict[str, Any]]:
        """Search for blocks containing text (case-sensitive substring match).

        Args:
            text: Text to search for in block content.
            page_title: Optional page title to limit search scope.
            limit: Maximum number of results to return.

        Returns:
            List of dicts with uid, content, page_title. Recoverable API errors
            give an empty list.

        Raises:
            AuthenticationError: If authentication fails.
            InvalidQueryError: If input contains invalid patterns.
        """
        sanitized_text = self._sanitize_query_input(text)

        page_clause = ""
        if page_title:
            sanitized_page = self._sanitize_query_input(page_title)
            page_clause = f'[(= ?page-title "{sanitized_page}")]'

        query = f"""[:find ?uid ?string ?page-title
                     :where
                     [?b :block/uid ?uid]
                     [?b :block/string ?string]
                     [(clojure.string/includes? ?string "{sanitized_text}")]
                     [?b :block/page ?page]
                     [?page :node/title ?page-title]
                     {page_clause}]"""

        try:
            results = self.run_query(query)
            return [
                {"uid": r[0], "content": r[1], "page_title": r[2]}
                for r in results[:limit]
            ]
        except (AuthenticationError, InvalidQueryError):
            raise
        except RoamAPIError as e:
            logger.warning("Error searching blocks for '%s': %s", text, e)
            return []

    def process_blocks(self, blocks: list[dict[str, Any]], depth: int = 0) -> str:
        """Recursively convert pulled blocks to indented markdown.

        Siblings are sorted by ``:block/order``. Heading blocks are written
        with ``#`` prefixes, all others as ``- `` bullets.
        Blocks with an empty string are not printed; their children are
        printed at the empty block's level.

        Args:
            blocks: Blocks from a pull result.
            depth: Current nesting level (0 = top level).

        Returns:
            Markdown with two spaces of indentation per level.
        """
        result = ""
        indent = "  " * depth

        for block in sorted(blocks, key=lambda b: b.get(":block/order", 0)):
            block_string = block.get(":block/string", "")
            children = block.get(":block/children")
            if not block_string:
                # Children of an empty block take its place
                if children:
                    result += self.process_blocks(children, depth)
                continue

            heading = block.get(":block/heading")
            if heading:
                result += f"{indent}{'#' * heading} {block_string}\n"
            else:
                result += f"{indent}- {block_string}\n"

            if children:
                result += self.process_blocks(children, depth + 1)

        return result
