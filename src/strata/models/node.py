"""Domain models for the outline tree."""

from collections.abc import Mapping
from dataclasses import dataclass, field

# (seq, ts, client_id, op_id): total order over operations, used for replay
# order and last-writer-wins comparisons.
OrderKey = tuple[int, int, str, str]


@dataclass(frozen=True)
class StatusDef:
    """A user-defined status a node can be in."""

    id: str
    label: str
    color: str = ""
    icon: str = ""
    final: bool = False


DEFAULT_STATUSES: tuple[StatusDef, ...] = (
    StatusDef(id="todo", label="To do", color="#8b949e", icon="circle"),
    StatusDef(id="in_progress", label="In progress", color="#d29922", icon="circle-half"),
    StatusDef(id="blocked", label="Blocked", color="#f85149", icon="circle-slash"),
    StatusDef(id="done", label="Done", color="#3fb950", icon="circle-check", final=True),
)


@dataclass(frozen=True)
class Node:
    """A single outline item.

    ``stamps`` records, per field group, the order key of the operation that
    last wrote it. It is bookkeeping for last-writer-wins and does not take
    part in equality.
    """

    id: str
    parent_id: str | None
    pos: str
    text: str = ""
    status: str = "todo"
    tags: tuple[str, ...] = ()
    due_date: int | None = None
    collapsed: bool = False
    deleted: bool = False
    deleted_at: int | None = None
    stamps: Mapping[str, OrderKey] = field(default_factory=dict, compare=False, repr=False)

    @property
    def title(self) -> str:
        """First line of the text."""
        return self.text.split("\n", 1)[0]

    @property
    def body(self) -> str:
        """Everything after the first line."""
        parts = self.text.split("\n", 1)
        return parts[1] if len(parts) > 1 else ""


@dataclass(frozen=True)
class TreeState:
    """Materialized tree: every node ever created, keyed by id."""

    nodes: Mapping[str, Node] = field(default_factory=dict)
    statuses: tuple[StatusDef, ...] = DEFAULT_STATUSES
    last_seq: int = 0

    def get(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    @property
    def default_status(self) -> str:
        return self.statuses[0].id if self.statuses else DEFAULT_STATUSES[0].id

    @property
    def status_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.statuses)


@dataclass(frozen=True)
class Snapshot:
    """Cached materialized state covering every operation up to ``seq_after``."""

    nodes: Mapping[str, Node]
    seq_after: int
    statuses: tuple[StatusDef, ...] = DEFAULT_STATUSES
    ts: int = 0
    snapshot_id: str = ""
