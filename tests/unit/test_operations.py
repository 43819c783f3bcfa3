"""Tests for operation records and the operation factory."""

import threading

import pytest

from strata.core.ops import OpFactory
from strata.models.operation import (
    PAYLOAD_TYPES,
    Create,
    Operation,
    OpType,
    ToggleCollapsed,
    UpdateText,
)


def test_factory_assigns_increasing_seq_and_client() -> None:
    factory = OpFactory(client_id="me", now_ms=lambda: 42)
    first = factory.make(UpdateText("n", "a"))
    second = factory.make(UpdateText("n", "b"))
    assert (first.seq, second.seq) == (1, 2)
    assert first.client_id == second.client_id == "me"
    assert first.ts == 42
    assert first.op_id != second.op_id
    assert factory.seq == 2


def test_factory_continues_from_start_seq_and_reset() -> None:
    factory = OpFactory(start_seq=10)
    assert factory.make(UpdateText("n", "a")).seq == 11
    factory.reset(100)
    assert factory.make(UpdateText("n", "b")).seq == 101


def test_factory_generates_client_id_when_missing() -> None:
    assert len(OpFactory().client_id) == 32


def test_concurrent_make_never_shares_a_seq() -> None:
    factory = OpFactory()
    seqs: list[int] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(200):
            op = factory.make(UpdateText("n", "x"))
            with lock:
                seqs.append(op.seq)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(seqs) == list(range(1, 801))


def test_operation_exposes_type_node_and_order_key() -> None:
    op = Operation(op_id="o", client_id="c", seq=3, ts=9, payload=Create("n", None, "i"))
    assert op.type is OpType.CREATE
    assert op.node_id == "n"
    assert op.order_key == (3, 9, "c", "o")


def test_operations_are_frozen() -> None:
    op = Operation(op_id="o", client_id="c", seq=1, ts=1, payload=UpdateText("n", "t"))
    with pytest.raises(AttributeError):
        op.seq = 2  # type: ignore[misc]


def test_wire_names_match_payload_types() -> None:
    assert {str(t) for t in OpType} == {
        "create",
        "updateText",
        "move",
        "setStatus",
        "toggleCollapsed",
        "tombstone",
        "restore",
        "addTag",
        "removeTag",
        "setDueDate",
    }
    for op_type, cls in PAYLOAD_TYPES.items():
        assert cls.type is op_type


def test_toggle_collapsed_defaults_to_flip() -> None:
    assert ToggleCollapsed("n").collapsed is None
