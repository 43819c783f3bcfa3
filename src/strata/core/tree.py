"""Tree queries over a materialized state: children, ancestry, rows, placement."""

from collections.abc import Mapping
from dataclasses import dataclass

from strata.core import rank
from strata.models.node import Node, TreeState


@dataclass(frozen=True)
class Row:
    """A node in the flattened outline, with its depth below the start parent."""

    node: Node
    depth: int


def sibling_key(node: Node) -> tuple:
    """Sort key among siblings.

    Equal rank keys fall back to the order of the write that placed the
    node, then to the id, so the order never depends on mapping order.
    """
    return (node.pos, node.stamps.get("position", ()), node.id)


def children(
    state: TreeState, parent_id: str | None, *, include_deleted: bool = False
) -> list[Node]:
    """Direct children of ``parent_id`` (None for top level), in sibling order."""
    found = [
        n
        for n in state.nodes.values()
        if n.parent_id == parent_id and (include_deleted or not n.deleted)
    ]
    return sorted(found, key=sibling_key)


def roots(state: TreeState) -> list[Node]:
    return children(state, None)


def is_ancestor(nodes: Mapping[str, Node], ancestor_id: str, node_id: str | None) -> bool:
    """Return True if ``ancestor_id`` is ``node_id`` or one of its ancestors."""
    seen: set[str] = set()
    current = node_id
    while current is not None and current not in seen:
        if current == ancestor_id:
            return True
        seen.add(current)
        node = nodes.get(current)
        current = node.parent_id if node else None
    return False


def ancestors(state: TreeState, node_id: str) -> list[Node]:
    """Ancestors of a node from the top level down to its parent."""
    result: list[Node] = []
    seen = {node_id}
    node = state.get(node_id)
    while node is not None and node.parent_id is not None and node.parent_id not in seen:
        seen.add(node.parent_id)
        node = state.get(node.parent_id)
        if node is not None:
            result.append(node)
    result.reverse()
    return result


def descendants(state: TreeState, node_id: str, *, include_deleted: bool = False) -> list[Node]:
    """All nodes below ``node_id`` in depth-first pre-order."""
    result: list[Node] = []
    stack = list(reversed(children(state, node_id, include_deleted=include_deleted)))
    seen = {node_id}
    while stack:
        node = stack.pop()
        if node.id in seen:
            continue
        seen.add(node.id)
        result.append(node)
        stack.extend(reversed(children(state, node.id, include_deleted=include_deleted)))
    return result


def flatten(
    state: TreeState, parent_id: str | None = None, *, expand_collapsed: bool = False
) -> list[Row]:
    """Visible rows below ``parent_id`` in outline order.

    Deleted nodes are skipped; children of collapsed nodes are skipped
    unless ``expand_collapsed`` is set.
    """
    rows: list[Row] = []

    def walk(pid: str | None, depth: int) -> None:
        for child in children(state, pid):
            rows.append(Row(node=child, depth=depth))
            if expand_collapsed or not child.collapsed:
                walk(child.id, depth + 1)

    walk(parent_id, 0)
    return rows


def _sibling_index(siblings: list[Node], node_id: str) -> int:
    for i, sibling in enumerate(siblings):
        if sibling.id == node_id:
            return i
    msg = f"Node {node_id!r} is not among its parent's children"
    raise KeyError(msg)


def previous_sibling(state: TreeState, node_id: str) -> Node | None:
    node = state.nodes[node_id]
    if node.deleted:
        return None
    siblings = children(state, node.parent_id)
    idx = _sibling_index(siblings, node_id)
    return siblings[idx - 1] if idx > 0 else None


def next_sibling(state: TreeState, node_id: str) -> Node | None:
    node = state.nodes[node_id]
    if node.deleted:
        return None
    siblings = children(state, node.parent_id)
    idx = _sibling_index(siblings, node_id)
    return siblings[idx + 1] if idx + 1 < len(siblings) else None


# --- Rank placement ---
#
# Placement looks at every sibling, tombstoned ones included: a tombstone keeps
# its key, and a restore must not land on a key handed out in the meantime.


def _sibling_keys(state: TreeState, parent_id: str | None) -> list[str]:
    return sorted({n.pos for n in children(state, parent_id, include_deleted=True)})


def position_at_end(state: TreeState, parent_id: str | None) -> str:
    keys = _sibling_keys(state, parent_id)
    return rank.after(keys[-1]) if keys else rank.initial()


def position_at_start(state: TreeState, parent_id: str | None) -> str:
    keys = _sibling_keys(state, parent_id)
    return rank.before(keys[0]) if keys else rank.initial()


def position_after(state: TreeState, node_id: str) -> str:
    """Key directly after ``node_id`` among its siblings."""
    node = state.nodes[node_id]
    higher = [k for k in _sibling_keys(state, node.parent_id) if k > node.pos]
    return rank.key_between(node.pos, higher[0] if higher else None)


def position_before(state: TreeState, node_id: str) -> str:
    """Key directly before ``node_id`` among its siblings."""
    node = state.nodes[node_id]
    lower = [k for k in _sibling_keys(state, node.parent_id) if k < node.pos]
    return rank.key_between(lower[-1] if lower else None, node.pos)


def position_at_index(state: TreeState, parent_id: str | None, index: int) -> str:
    """Key that places a node at ``index`` among the visible children.

    ``index`` past the end appends; negative indexes clamp to the start.
    """
    visible = children(state, parent_id)
    index = max(index, 0)
    if index >= len(visible):
        return position_at_end(state, parent_id)
    return position_before(state, visible[index].id)
