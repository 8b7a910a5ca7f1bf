"""Linearization of markdown trees into Roam batch actions."""

import logging
import secrets
import string
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel

if TYPE_CHECKING:
    from mcp_server_roam_import.markdown_utils import MarkdownNode

logger = logging.getLogger(__name__)

# Roam block UIDs are 9 characters drawn from this alphabet
ROAM_UID_LENGTH = 9
ROAM_UID_ALPHABET = string.ascii_letters + string.digits + "-_"

# Roam only renders heading levels 1-3
MAX_HEADING_LEVEL = 3

Order = Literal["first", "last"] | int
UidGenerator = Callable[[], str]


class BlockAction(BaseModel):
    """A single create-block action in a batch.

    ``parent_uid`` is either an existing page/block UID or the ``uid`` of an
    earlier action in the same batch.
    """

    action: Literal["create-block"] = "create-block"
    uid: str
    parent_uid: str
    order: Order
    string: str
    heading: int | None = None

    def to_roam(self) -> dict[str, Any]:
        """Render the action in the Roam write API format.

        Returns:
            Dict suitable for the ``actions`` list of a batch-actions write.
        """
        block: dict[str, Any] = {"uid": self.uid, "string": self.string}
        if self.heading:
            block["heading"] = self.heading
        return {
            "action": self.action,
            "location": {"parent-uid": self.parent_uid, "order": self.order},
            "block": block,
        }


class RandomUidGenerator:
    """Generate random Roam-style UIDs that never repeat within one batch."""

    def __init__(self, length: int = ROAM_UID_LENGTH) -> None:
        self.length = length
        self._issued: set[str] = set()

    def __call__(self) -> str:
        while True:
            uid = "".join(
                secrets.choice(ROAM_UID_ALPHABET) for _ in range(self.length)
            )
            if uid not in self._issued:
                self._issued.add(uid)
                return uid


class SequentialUidGenerator:
    """Generate predictable UIDs from a prefix and a counter.

    Example:
        >>> gen = SequentialUidGenerator("imp")
        >>> gen(), gen()
        ('imp0001', 'imp0002')
    """

    def __init__(self, prefix: str = "blk", width: int = 4) -> None:
        self.prefix = prefix
        self.width = width
        self._counter = 0

    def __call__(self) -> str:
        self._counter += 1
        return f"{self.prefix}{self._counter:0{self.width}d}"


def generate_uid() -> str:
    """Generate a single random Roam-style UID."""
    return RandomUidGenerator()()


def validate_order(order: Any) -> None:
    """Check that order is "first", "last" or a non-negative integer.

    Raises:
        ValueError: If order is anything else.
    """
    if isinstance(order, bool):
        raise ValueError(f"Invalid order: {order!r}")
    if isinstance(order, int):
        if order < 0:
            raise ValueError(f"Order index must be non-negative, got {order}")
        return
    if order not in ("first", "last"):
        raise ValueError(f"Order must be 'first', 'last' or an index, got {order!r}")


def _root_orders(order: Order, count: int, sequential: bool) -> list[Order]:
    if not sequential or order == "last":
        return [order] * count
    start = 0 if order == "first" else int(order)
    return [start + i for i in range(count)]


def convert_to_roam_actions(
    nodes: Sequence["MarkdownNode"],
    parent_uid: str,
    order: Order = "last",
    uid_generator: UidGenerator | None = None,
    sequential_roots: bool = False,
) -> list[BlockAction]:
    """Convert markdown nodes to Roam create-block actions.

    Nodes are visited depth-first in document order, so an action for a
    parent always comes before the actions of its children. Top-level nodes
    are placed with ``order``; every descendant is appended with "last".

    Args:
        nodes: Root nodes of the markdown forest.
        parent_uid: UID of the existing page or block to insert under.
        order: Position for the top-level nodes.
        uid_generator: Callable returning a fresh UID per call. A new
            RandomUidGenerator is used when omitted.
        sequential_roots: If True, "first" and integer orders are spread over
            consecutive positions so the roots keep their document order.

    Returns:
        Ordered list of actions ready to submit as one batch.

    Raises:
        ValueError: If parent_uid is empty or order is invalid.
    """
    if not isinstance(parent_uid, str) or not parent_uid:
        raise ValueError("parent_uid must be a non-empty string")
    validate_order(order)

    next_uid = uid_generator or RandomUidGenerator()
    actions: list[BlockAction] = []

    # Helper function to recursively create actions
    def create_block_actions(
        nodes: Sequence["MarkdownNode"], parent_uid: str, orders: list[Order]
    ) -> None:
        for node, node_order in zip(nodes, orders):
            uid = next_uid()
            heading = node.heading_level
            if heading is not None:
                heading = min(heading, MAX_HEADING_LEVEL)

            actions.append(
                BlockAction(
                    uid=uid,
                    parent_uid=parent_uid,
                    order=node_order,
                    string=node.content,
                    heading=heading,
                )
            )

            if node.children:
                create_block_actions(
                    node.children, uid, ["last"] * len(node.children)
                )

    create_block_actions(
        nodes, parent_uid, _root_orders(order, len(nodes), sequential_roots)
    )
    logger.debug("Generated %d block actions under %s", len(actions), parent_uid)
    return actions
