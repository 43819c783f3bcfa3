"""Tests for the pure reducer."""

from dataclasses import dataclass
from typing import ClassVar

from strata.core.reducer import (
    CYCLE,
    DUPLICATE_ID,
    MISSING_NODE,
    MISSING_PARENT,
    STALE_WRITE,
    UNKNOWN_TYPE,
    apply_one,
    empty_state,
    reduce,
)
from strata.models.node import StatusDef, TreeState
from strata.models.operation import (
    AddTag,
    Create,
    Move,
    Operation,
    RemoveTag,
    Restore,
    SetDueDate,
    SetStatus,
    ToggleCollapsed,
    Tombstone,
    UpdateText,
)
from tests.unit.fakes import make_op


def _build(*ops: Operation) -> TreeState:
    state = empty_state()
    for op in ops:
        state = apply_one(state, op)
    return state


def _tree() -> TreeState:
    """root -> child -> grandchild, plus a second root."""
    return _build(
        make_op(1, Create("root", None, "i", text="Root")),
        make_op(2, Create("child", "root", "i")),
        make_op(3, Create("grandchild", "child", "i")),
        make_op(4, Create("other", None, "r")),
    )


def test_create_uses_first_status_definition_by_default() -> None:
    state = _tree()
    assert state.nodes["child"].status == "todo"
    custom = empty_state([StatusDef("open", "Open"), StatusDef("closed", "Closed")])
    state = apply_one(custom, make_op(1, Create("n", None, "i")))
    assert state.nodes["n"].status == "open"


def test_create_keeps_explicit_fields_and_dedupes_tags() -> None:
    state = _build(
        make_op(1, Create("n", None, "i", text="T", status="done", tags=("a", "b", "a"), due_date=5))
    )
    node = state.nodes["n"]
    assert (node.text, node.status, node.tags, node.due_date) == ("T", "done", ("a", "b"), 5)


def test_create_with_existing_id_is_rejected() -> None:
    state = _tree()
    result = reduce(state, make_op(5, Create("child", None, "z", text="dup")))
    assert not result.applied
    assert result.error == DUPLICATE_ID
    assert result.state.nodes == state.nodes
    assert result.state.last_seq == 5


def test_create_under_missing_parent_is_rejected() -> None:
    result = reduce(empty_state(), make_op(1, Create("n", "ghost", "i")))
    assert result.error == MISSING_PARENT
    assert "n" not in result.state.nodes


def test_update_text_on_missing_node_is_rejected() -> None:
    result = reduce(empty_state(), make_op(1, UpdateText("ghost", "x")))
    assert result.error == MISSING_NODE


def test_move_changes_parent_and_pos() -> None:
    state = apply_one(_tree(), make_op(5, Move("grandchild", "other", "i")))
    node = state.nodes["grandchild"]
    assert (node.parent_id, node.pos) == ("other", "i")


def test_move_into_own_descendant_is_rejected() -> None:
    state = _tree()
    result = reduce(state, make_op(5, Move("root", "grandchild", "i")))
    assert result.error == CYCLE
    assert result.state.nodes == state.nodes


def test_move_under_itself_is_rejected() -> None:
    assert reduce(_tree(), make_op(5, Move("child", "child", "i"))).error == CYCLE


def test_move_to_missing_parent_is_rejected() -> None:
    assert reduce(_tree(), make_op(5, Move("child", "ghost", "i"))).error == MISSING_PARENT


def test_move_to_top_level() -> None:
    state = apply_one(_tree(), make_op(5, Move("child", None, "a")))
    assert state.nodes["child"].parent_id is None


def test_tombstone_keeps_position_and_stamps_op_ts() -> None:
    state = apply_one(_tree(), make_op(5, Tombstone("child"), ts=777))
    node = state.nodes["child"]
    assert node.deleted
    assert node.deleted_at == 777
    assert (node.parent_id, node.pos) == ("root", "i")


def test_tombstone_uses_explicit_deleted_at() -> None:
    state = apply_one(_tree(), make_op(5, Tombstone("child", deleted_at=123)))
    assert state.nodes["child"].deleted_at == 123


def test_tombstone_twice_keeps_first_deleted_at() -> None:
    state = apply_one(_tree(), make_op(5, Tombstone("child"), ts=100))
    result = reduce(state, make_op(6, Tombstone("child"), ts=200))
    assert result.applied
    assert result.state.nodes["child"].deleted_at == 100


def test_tombstone_then_restore_round_trips() -> None:
    before = _build(
        make_op(1, Create("p", None, "i")),
        make_op(2, Create("n", "p", "m", status="blocked", tags=("x",))),
    )
    after = apply_one(apply_one(before, make_op(3, Tombstone("n"))), make_op(4, Restore("n")))
    assert after.nodes["n"] == before.nodes["n"]
    assert not after.nodes["n"].deleted
    assert after.nodes["n"].deleted_at is None


def test_restore_under_deleted_parent_keeps_parent() -> None:
    state = _build(
        make_op(1, Create("p", None, "i")),
        make_op(2, Create("n", "p", "i")),
        make_op(3, Tombstone("n")),
        make_op(4, Tombstone("p")),
        make_op(5, Restore("n")),
    )
    assert state.nodes["n"].parent_id == "p"
    assert not state.nodes["n"].deleted
    assert state.nodes["p"].deleted


def test_add_tag_is_idempotent() -> None:
    state = _build(
        make_op(1, Create("n", None, "i")),
        make_op(2, AddTag("n", "work")),
        make_op(3, AddTag("n", "work")),
    )
    assert state.nodes["n"].tags == ("work",)


def test_remove_absent_tag_is_a_no_op() -> None:
    state = _build(make_op(1, Create("n", None, "i", tags=("a",))))
    after = apply_one(state, make_op(2, RemoveTag("n", "b")))
    assert after.nodes["n"].tags == ("a",)
    after = apply_one(after, make_op(3, RemoveTag("n", "a")))
    assert after.nodes["n"].tags == ()


def test_set_status_and_due_date() -> None:
    state = _build(
        make_op(1, Create("n", None, "i")),
        make_op(2, SetStatus("n", "done")),
        make_op(3, SetDueDate("n", 1234)),
    )
    assert state.nodes["n"].status == "done"
    assert state.nodes["n"].due_date == 1234
    state = apply_one(state, make_op(4, SetDueDate("n", None)))
    assert state.nodes["n"].due_date is None


def test_toggle_collapsed_flips_or_sets() -> None:
    state = _build(make_op(1, Create("n", None, "i")), make_op(2, ToggleCollapsed("n")))
    assert state.nodes["n"].collapsed
    state = apply_one(state, make_op(3, ToggleCollapsed("n")))
    assert not state.nodes["n"].collapsed
    state = apply_one(state, make_op(4, ToggleCollapsed("n", collapsed=True)))
    state = apply_one(state, make_op(5, ToggleCollapsed("n", collapsed=True)))
    assert state.nodes["n"].collapsed


def test_older_write_loses_to_newer_one() -> None:
    state = _build(make_op(1, Create("n", None, "i")), make_op(5, UpdateText("n", "new")))
    result = reduce(state, make_op(3, UpdateText("n", "old")))
    assert result.error == STALE_WRITE
    assert result.state.nodes["n"].text == "new"
    assert result.state.last_seq == 5


def test_same_seq_ties_break_on_client_id() -> None:
    state = _build(make_op(1, Create("n", None, "i")))
    state = apply_one(state, make_op(2, UpdateText("n", "from b"), ts=10, client_id="b"))
    result = reduce(state, make_op(2, UpdateText("n", "from a"), ts=10, client_id="a"))
    assert result.error == STALE_WRITE
    assert result.state.nodes["n"].text == "from b"


def test_stale_check_is_per_field_group() -> None:
    state = _build(make_op(1, Create("n", None, "i")), make_op(5, UpdateText("n", "new")))
    state = apply_one(state, make_op(3, SetStatus("n", "done")))
    assert state.nodes["n"].status == "done"


def test_reduce_does_not_modify_input_state() -> None:
    state = _tree()
    nodes_before = dict(state.nodes)
    reduce(state, make_op(5, UpdateText("child", "changed")))
    assert dict(state.nodes) == nodes_before
    assert state.nodes["child"].text == ""


@dataclass(frozen=True)
class _Unknown:
    node_id: str
    type: ClassVar[str] = "paint"


def test_unknown_operation_type_is_absorbed() -> None:
    op = Operation(op_id="o", client_id="c", seq=1, ts=1, payload=_Unknown("n"))  # type: ignore[arg-type]
    result = reduce(empty_state(), op)
    assert result.error == UNKNOWN_TYPE
    assert result.state.last_seq == 1
