"""Unit tests for batch action generation."""

import pytest
from pytest_mock import MockerFixture

from mcp_server_roam_import.actions import (
    ROAM_UID_ALPHABET,
    ROAM_UID_LENGTH,
    BlockAction,
    RandomUidGenerator,
    SequentialUidGenerator,
    convert_to_roam_actions,
    generate_uid,
    validate_order,
)
from mcp_server_roam_import.markdown_utils import MarkdownNode


def make_tree() -> list[MarkdownNode]:
    """Two roots, the first with a nested child."""
    parent = MarkdownNode("Parent", 0)
    child = MarkdownNode("Child", 1)
    child.children.append(MarkdownNode("Grandchild", 2))
    parent.children.append(child)
    return [parent, MarkdownNode("Sibling", 0)]


class TestBlockAction:
    """Tests for BlockAction.to_roam."""

    def test_to_roam(self) -> None:
        """Test the Roam write format."""
        action = BlockAction(uid="abc", parent_uid="page", order="last", string="Hi")
        assert action.to_roam() == {
            "action": "create-block",
            "location": {"parent-uid": "page", "order": "last"},
            "block": {"uid": "abc", "string": "Hi"},
        }

    def test_to_roam_with_heading(self) -> None:
        """Test that a heading level is included when set."""
        action = BlockAction(
            uid="abc", parent_uid="page", order=0, string="Title", heading=2
        )
        assert action.to_roam()["block"] == {
            "uid": "abc",
            "string": "Title",
            "heading": 2,
        }
        assert action.to_roam()["location"]["order"] == 0


class TestUidGenerators:
    """Tests for UID generation."""

    def test_sequential(self) -> None:
        """Test sequential UIDs."""
        gen = SequentialUidGenerator("imp")
        assert [gen(), gen(), gen()] == ["imp0001", "imp0002", "imp0003"]

    def test_sequential_width(self) -> None:
        """Test counter padding."""
        gen = SequentialUidGenerator("x", width=2)
        assert gen() == "x01"

    def test_random_format(self) -> None:
        """Test that random UIDs look like Roam UIDs."""
        uid = generate_uid()
        assert len(uid) == ROAM_UID_LENGTH
        assert all(c in ROAM_UID_ALPHABET for c in uid)

    def test_random_unique(self) -> None:
        """Test that one generator never repeats a UID."""
        gen = RandomUidGenerator()
        uids = [gen() for _ in range(1000)]
        assert len(set(uids)) == len(uids)

    def test_random_redraws_on_collision(self, mocker: MockerFixture) -> None:
        """Test that a repeated draw is replaced."""
        mocker.patch(
            "mcp_server_roam_import.actions.secrets.choice",
            side_effect=["a"] * 18 + ["b"] * 9,
        )
        gen = RandomUidGenerator()
        assert gen() == "a" * 9
        assert gen() == "b" * 9


class TestValidateOrder:
    """Tests for validate_order."""

    @pytest.mark.parametrize("order", ["first", "last", 0, 5])
    def test_valid(self, order: str | int) -> None:
        """Test accepted values."""
        validate_order(order)

    @pytest.mark.parametrize("order", ["middle", -1, True, None, 1.5])
    def test_invalid(self, order: object) -> None:
        """Test rejected values."""
        with pytest.raises(ValueError):
            validate_order(order)


class TestConvertToRoamActions:
    """Tests for convert_to_roam_actions."""

    def test_depth_first_order(self) -> None:
        """Test that actions follow document order with parents first."""
        actions = convert_to_roam_actions(
            make_tree(), "page", uid_generator=SequentialUidGenerator("u")
        )
        assert [(a.uid, a.parent_uid, a.string) for a in actions] == [
            ("u0001", "page", "Parent"),
            ("u0002", "u0001", "Child"),
            ("u0003", "u0002", "Grandchild"),
            ("u0004", "page", "Sibling"),
        ]

    def test_root_order_and_child_last(self) -> None:
        """Test that only roots get the requested order."""
        actions = convert_to_roam_actions(make_tree(), "page", "first")
        assert [a.order for a in actions] == ["first", "last", "last", "first"]

    def test_sequential_roots_first(self) -> None:
        """Test that "first" spreads over consecutive positions."""
        actions = convert_to_roam_actions(
            make_tree(), "page", "first", sequential_roots=True
        )
        assert [a.order for a in actions] == [0, "last", "last", 1]

    def test_sequential_roots_index(self) -> None:
        """Test that an index spreads from that position."""
        actions = convert_to_roam_actions(make_tree(), "page", 3, sequential_roots=True)
        assert [a.order for a in actions] == [3, "last", "last", 4]

    def test_sequential_roots_last(self) -> None:
        """Test that "last" is kept as is."""
        actions = convert_to_roam_actions(
            make_tree(), "page", "last", sequential_roots=True
        )
        assert [a.order for a in actions] == ["last"] * 4

    def test_heading_clamped(self) -> None:
        """Test that headings deeper than 3 are clamped."""
        nodes = [MarkdownNode("Deep", 0, heading_level=5), MarkdownNode("H1", 0, 1)]
        actions = convert_to_roam_actions(nodes, "page")
        assert [a.heading for a in actions] == [3, 1]

    def test_unique_uids(self) -> None:
        """Test that every action gets its own UID."""
        actions = convert_to_roam_actions(make_tree() * 50, "page")
        assert len({a.uid for a in actions}) == len(actions)

    def test_empty_nodes(self) -> None:
        """Test that an empty forest gives no actions."""
        assert convert_to_roam_actions([], "page") == []

    def test_empty_parent_uid(self) -> None:
        """Test that an empty parent UID is rejected."""
        with pytest.raises(ValueError):
            convert_to_roam_actions(make_tree(), "")

    def test_invalid_order(self) -> None:
        """Test that an invalid order is rejected."""
        with pytest.raises(ValueError):
            convert_to_roam_actions(
                make_tree(), "page", "middle"  # type: ignore[arg-type]
            )
