"""Operation records: the permanent, append-only history of a tree."""

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from strata.models.node import OrderKey


class OpType(StrEnum):
    CREATE = "create"
    UPDATE_TEXT = "updateText"
    MOVE = "move"
    SET_STATUS = "setStatus"
    TOGGLE_COLLAPSED = "toggleCollapsed"
    TOMBSTONE = "tombstone"
    RESTORE = "restore"
    ADD_TAG = "addTag"
    REMOVE_TAG = "removeTag"
    SET_DUE_DATE = "setDueDate"


@dataclass(frozen=True)
class Create:
    """Insert a new node. ``status=None`` picks the first status definition."""

    node_id: str
    parent_id: str | None
    pos: str
    text: str = ""
    status: str | None = None
    tags: tuple[str, ...] = ()
    due_date: int | None = None
    collapsed: bool = False
    type: ClassVar[OpType] = OpType.CREATE


@dataclass(frozen=True)
class UpdateText:
    node_id: str
    text: str
    type: ClassVar[OpType] = OpType.UPDATE_TEXT


@dataclass(frozen=True)
class Move:
    node_id: str
    parent_id: str | None
    pos: str
    type: ClassVar[OpType] = OpType.MOVE


@dataclass(frozen=True)
class SetStatus:
    node_id: str
    status: str
    type: ClassVar[OpType] = OpType.SET_STATUS


@dataclass(frozen=True)
class ToggleCollapsed:
    """Set the collapsed flag, or flip it when ``collapsed`` is None."""

    node_id: str
    collapsed: bool | None = None
    type: ClassVar[OpType] = OpType.TOGGLE_COLLAPSED


@dataclass(frozen=True)
class Tombstone:
    """Soft-delete a node. ``deleted_at=None`` stamps the operation's ts."""

    node_id: str
    deleted_at: int | None = None
    type: ClassVar[OpType] = OpType.TOMBSTONE


@dataclass(frozen=True)
class Restore:
    node_id: str
    type: ClassVar[OpType] = OpType.RESTORE


@dataclass(frozen=True)
class AddTag:
    node_id: str
    tag: str
    type: ClassVar[OpType] = OpType.ADD_TAG


@dataclass(frozen=True)
class RemoveTag:
    node_id: str
    tag: str
    type: ClassVar[OpType] = OpType.REMOVE_TAG


@dataclass(frozen=True)
class SetDueDate:
    node_id: str
    due_date: int | None
    type: ClassVar[OpType] = OpType.SET_DUE_DATE


Payload = (
    Create
    | UpdateText
    | Move
    | SetStatus
    | ToggleCollapsed
    | Tombstone
    | Restore
    | AddTag
    | RemoveTag
    | SetDueDate
)

PAYLOAD_TYPES: dict[OpType, type[Payload]] = {
    OpType.CREATE: Create,
    OpType.UPDATE_TEXT: UpdateText,
    OpType.MOVE: Move,
    OpType.SET_STATUS: SetStatus,
    OpType.TOGGLE_COLLAPSED: ToggleCollapsed,
    OpType.TOMBSTONE: Tombstone,
    OpType.RESTORE: Restore,
    OpType.ADD_TAG: AddTag,
    OpType.REMOVE_TAG: RemoveTag,
    OpType.SET_DUE_DATE: SetDueDate,
}


@dataclass(frozen=True)
class Operation:
    """One immutable, sequenced record of a single state change."""

    op_id: str
    client_id: str
    seq: int
    ts: int
    payload: Payload

    @property
    def type(self) -> OpType:
        return self.payload.type

    @property
    def node_id(self) -> str:
        return self.payload.node_id

    @property
    def order_key(self) -> OrderKey:
        return (self.seq, self.ts, self.client_id, self.op_id)
