"""Tests for compensating-operation generation."""

from dataclasses import replace

from strata.core.history import compensate
from strata.models.node import Node
from strata.models.operation import (
    AddTag,
    Create,
    Move,
    RemoveTag,
    Restore,
    SetDueDate,
    SetStatus,
    ToggleCollapsed,
    Tombstone,
    UpdateText,
)

BASE = Node(id="n", parent_id="p", pos="i", text="t", status="todo", tags=("a", "b"))


def _with(**changes: object) -> Node:
    return replace(BASE, **changes)  # type: ignore[arg-type]


def test_identical_images_need_nothing() -> None:
    assert compensate("n", BASE, _with()) == []


def test_only_changed_fields_are_compensated() -> None:
    current = _with(text="changed", status="done", due_date=5, collapsed=True)
    assert compensate("n", current, BASE) == [
        UpdateText("n", "t"),
        SetStatus("n", "todo"),
        ToggleCollapsed("n", collapsed=False),
        SetDueDate("n", None),
    ]


def test_position_change_becomes_one_move() -> None:
    current = _with(parent_id=None, pos="z")
    assert compensate("n", current, BASE) == [Move("n", "p", "i")]


def test_absent_target_tombstones() -> None:
    assert compensate("n", BASE, None) == [Tombstone("n")]
    assert compensate("n", _with(deleted=True, deleted_at=9), None) == []


def test_absent_current_recreates() -> None:
    payloads = compensate("n", None, BASE)
    assert payloads == [
        Create("n", "p", "i", text="t", status="todo", tags=("a", "b"), due_date=None)
    ]


def test_deleted_target_keeps_deleted_at() -> None:
    target = _with(deleted=True, deleted_at=42)
    assert compensate("n", BASE, target) == [Tombstone("n", deleted_at=42)]


def test_restore_comes_first() -> None:
    current = _with(deleted=True, deleted_at=42, text="other")
    assert compensate("n", current, BASE) == [Restore("n"), UpdateText("n", "t")]


def test_tags_rebuilt_after_common_prefix() -> None:
    current = _with(tags=("a", "c", "b"))
    assert compensate("n", current, BASE) == [
        RemoveTag("n", "c"),
        RemoveTag("n", "b"),
        AddTag("n", "b"),
    ]


def test_tag_added_at_end() -> None:
    assert compensate("n", BASE, _with(tags=("a", "b", "c"))) == [AddTag("n", "c")]
