"""Reducer and replay engine.

Pure transition: (state, operation) -> state. No IO, no clock, no randomness;
an operation's effect depends only on the state it meets and its own fields,
so replaying the same log always produces the same tree.

Structural anomalies (missing referent, would-be cycle, duplicate id, stale
write) are absorbed as no-ops. A log that is partly inapplicable must still
rebuild everything else.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from loguru import logger

from strata.core.ops import new_id
from strata.core.tree import is_ancestor
from strata.models.node import DEFAULT_STATUSES, Node, OrderKey, Snapshot, StatusDef, TreeState
from strata.models.operation import (
    AddTag,
    Create,
    Move,
    Operation,
    OpType,
    RemoveTag,
    Restore,
    SetDueDate,
    SetStatus,
    ToggleCollapsed,
    Tombstone,
    UpdateText,
)

# Field groups tracked for last-writer-wins. Tags are a set and do not take part.
STAMPED_GROUPS = ("text", "position", "status", "collapsed", "due_date", "deleted")

MISSING_NODE = "MISSING_NODE"
MISSING_PARENT = "MISSING_PARENT"
DUPLICATE_ID = "DUPLICATE_ID"
CYCLE = "CYCLE"
STALE_WRITE = "STALE_WRITE"
UNKNOWN_TYPE = "UNKNOWN_TYPE"


@dataclass(frozen=True)
class ReduceResult:
    """Outcome of applying one operation."""

    state: TreeState
    applied: bool
    error: str | None = None


@dataclass(frozen=True)
class Anomaly:
    """An operation replay absorbed as a no-op."""

    seq: int
    op_id: str
    error: str


@dataclass(frozen=True)
class ReplayResult:
    """Outcome of folding a log into a state."""

    state: TreeState
    applied: int
    skipped: int = 0
    anomalies: tuple[Anomaly, ...] = ()


def empty_state(statuses: Iterable[StatusDef] | None = None) -> TreeState:
    """The state of a document with no operations."""
    return TreeState(nodes={}, statuses=tuple(statuses or DEFAULT_STATUSES), last_seq=0)


def reduce(state: TreeState, op: Operation) -> ReduceResult:
    """Apply one operation, reporting whether it took effect.

    The input state is never modified. A rejected operation still advances
    ``last_seq``: it has been consumed from the log.
    """
    nodes = dict(state.nodes)
    error = _apply(nodes, op, state.default_status)
    last_seq = max(state.last_seq, op.seq)
    if error is not None:
        return ReduceResult(state=replace(state, last_seq=last_seq), applied=False, error=error)
    return ReduceResult(state=replace(state, nodes=nodes, last_seq=last_seq), applied=True)


def apply_one(state: TreeState, op: Operation) -> TreeState:
    """Apply one operation and return the new state. Never raises for anomalies."""
    return reduce(state, op).state


def replay(
    snapshot: Snapshot | None,
    ops: Iterable[Operation],
    *,
    statuses: Iterable[StatusDef] | None = None,
) -> ReplayResult:
    """Fold operations (optionally on top of a snapshot) into a state.

    Operations are applied in order-key order. Those already covered by the
    snapshot (``seq <= seq_after``) are skipped. Anomalies are counted and
    logged; they never abort the fold.

    Args:
        snapshot: Starting point, or None to start from an empty tree.
        ops: Operations in any order.
        statuses: Status definitions to use instead of the snapshot's (or
            the built-in defaults when there is no snapshot).
    """
    if snapshot is None:
        nodes: dict[str, Node] = {}
        status_defs = tuple(statuses or DEFAULT_STATUSES)
        base_seq = 0
    else:
        nodes = dict(snapshot.nodes)
        status_defs = tuple(statuses or snapshot.statuses)
        base_seq = snapshot.seq_after

    default_status = status_defs[0].id if status_defs else DEFAULT_STATUSES[0].id
    last_seq = base_seq
    applied = 0
    skipped = 0
    anomalies: list[Anomaly] = []

    for op in sorted(ops, key=lambda o: o.order_key):
        if op.seq <= base_seq:
            skipped += 1
            continue
        if op.seq > last_seq + 1:
            logger.warning("Sequence gap in log: {} -> {}", last_seq, op.seq)
        error = _apply(nodes, op, default_status)
        last_seq = max(last_seq, op.seq)
        if error is None:
            applied += 1
        else:
            anomalies.append(Anomaly(seq=op.seq, op_id=op.op_id, error=error))
            logger.debug("Replay absorbed seq {} ({}): {}", op.seq, op.type, error)

    if anomalies:
        logger.warning("Replay absorbed {} anomalies as no-ops", len(anomalies))

    state = TreeState(nodes=nodes, statuses=status_defs, last_seq=last_seq)
    return ReplayResult(
        state=state, applied=applied, skipped=skipped, anomalies=tuple(anomalies)
    )


def snapshot_of(state: TreeState, *, ts: int = 0, snapshot_id: str | None = None) -> Snapshot:
    """Capture a state as a snapshot covering everything through ``last_seq``."""
    return Snapshot(
        nodes=dict(state.nodes),
        seq_after=state.last_seq,
        statuses=state.statuses,
        ts=ts,
        snapshot_id=snapshot_id or new_id(),
    )


# ---------------------------------------------------------------------------
# Handlers. Each mutates the private ``nodes`` dict by replacing Node objects
# (never the objects themselves) and returns an error code or None.
# ---------------------------------------------------------------------------


def _is_stale(node: Node, group: str, key: OrderKey) -> bool:
    stamp = node.stamps.get(group)
    return stamp is not None and stamp > key


def _write(node: Node, group: str, key: OrderKey, **changes: object) -> Node:
    return replace(node, stamps={**node.stamps, group: key}, **changes)  # type: ignore[arg-type]


def _apply_create(nodes: dict[str, Node], op: Operation, default_status: str) -> str | None:
    p: Create = op.payload  # type: ignore[assignment]
    if p.node_id in nodes:
        return DUPLICATE_ID
    if p.parent_id is not None and p.parent_id not in nodes:
        return MISSING_PARENT
    key = op.order_key
    nodes[p.node_id] = Node(
        id=p.node_id,
        parent_id=p.parent_id,
        pos=p.pos,
        text=p.text,
        status=p.status or default_status,
        tags=tuple(dict.fromkeys(p.tags)),
        due_date=p.due_date,
        collapsed=p.collapsed,
        stamps=dict.fromkeys(STAMPED_GROUPS, key),
    )
    return None


def _apply_update_text(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: UpdateText = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if _is_stale(node, "text", op.order_key):
        return STALE_WRITE
    nodes[p.node_id] = _write(node, "text", op.order_key, text=p.text)
    return None


def _apply_move(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: Move = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if p.parent_id is not None:
        if p.parent_id not in nodes:
            return MISSING_PARENT
        if is_ancestor(nodes, p.node_id, p.parent_id):
            return CYCLE
    if _is_stale(node, "position", op.order_key):
        return STALE_WRITE
    nodes[p.node_id] = _write(node, "position", op.order_key, parent_id=p.parent_id, pos=p.pos)
    return None


def _apply_set_status(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: SetStatus = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if _is_stale(node, "status", op.order_key):
        return STALE_WRITE
    nodes[p.node_id] = _write(node, "status", op.order_key, status=p.status)
    return None


def _apply_toggle_collapsed(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: ToggleCollapsed = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if _is_stale(node, "collapsed", op.order_key):
        return STALE_WRITE
    collapsed = (not node.collapsed) if p.collapsed is None else p.collapsed
    nodes[p.node_id] = _write(node, "collapsed", op.order_key, collapsed=collapsed)
    return None


def _apply_tombstone(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: Tombstone = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if _is_stale(node, "deleted", op.order_key):
        return STALE_WRITE
    if node.deleted:
        return None
    deleted_at = op.ts if p.deleted_at is None else p.deleted_at
    nodes[p.node_id] = _write(
        node, "deleted", op.order_key, deleted=True, deleted_at=deleted_at
    )
    return None


def _apply_restore(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: Restore = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if _is_stale(node, "deleted", op.order_key):
        return STALE_WRITE
    if not node.deleted:
        return None
    # The parent may itself be tombstoned; the node stays under it regardless.
    nodes[p.node_id] = _write(node, "deleted", op.order_key, deleted=False, deleted_at=None)
    return None


def _apply_add_tag(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: AddTag = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if p.tag not in node.tags:
        nodes[p.node_id] = replace(node, tags=(*node.tags, p.tag))
    return None


def _apply_remove_tag(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: RemoveTag = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if p.tag in node.tags:
        nodes[p.node_id] = replace(node, tags=tuple(t for t in node.tags if t != p.tag))
    return None


def _apply_set_due_date(nodes: dict[str, Node], op: Operation, _default: str) -> str | None:
    p: SetDueDate = op.payload  # type: ignore[assignment]
    node = nodes.get(p.node_id)
    if node is None:
        return MISSING_NODE
    if _is_stale(node, "due_date", op.order_key):
        return STALE_WRITE
    nodes[p.node_id] = _write(node, "due_date", op.order_key, due_date=p.due_date)
    return None


_HANDLERS: dict[OpType, Callable[[dict[str, Node], Operation, str], str | None]] = {
    OpType.CREATE: _apply_create,
    OpType.UPDATE_TEXT: _apply_update_text,
    OpType.MOVE: _apply_move,
    OpType.SET_STATUS: _apply_set_status,
    OpType.TOGGLE_COLLAPSED: _apply_toggle_collapsed,
    OpType.TOMBSTONE: _apply_tombstone,
    OpType.RESTORE: _apply_restore,
    OpType.ADD_TAG: _apply_add_tag,
    OpType.REMOVE_TAG: _apply_remove_tag,
    OpType.SET_DUE_DATE: _apply_set_due_date,
}


def _apply(nodes: dict[str, Node], op: Operation, default_status: str) -> str | None:
    handler = _HANDLERS.get(op.type)
    if handler is None:
        return UNKNOWN_TYPE
    return handler(nodes, op, default_status)
