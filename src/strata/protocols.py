"""Protocols for the collaborators the core depends on."""

from typing import Protocol, runtime_checkable

from strata.models.node import Snapshot, StatusDef, TreeState
from strata.models.operation import Operation, Payload


class StoreError(Exception):
    """Raised by a store when an append, load or snapshot write fails."""


@runtime_checkable
class StoreProtocol(Protocol):
    """Durable log of operations, the latest snapshot and the status list."""

    def append_op(self, op: Operation) -> None:
        """Persist one operation. Calls arrive in ascending seq order."""
        ...

    def load_snapshot(self) -> Snapshot | None:
        """Return the most recent snapshot, or None if there is none."""
        ...

    def load_ops_since(self, seq: int) -> list[Operation]:
        """Return every operation with a seq greater than ``seq``, ascending."""
        ...

    def save_snapshot(self, snapshot: Snapshot) -> None:
        """Persist a snapshot, superseding older ones."""
        ...

    def max_seq(self) -> int:
        """Highest seq stored, counting rows that no longer decode (0 if empty)."""
        ...

    def load_statuses(self) -> tuple[StatusDef, ...] | None:
        """Return the saved status definitions, or None if never saved."""
        ...

    def save_statuses(self, statuses: tuple[StatusDef, ...]) -> None:
        """Persist the status definitions, replacing the saved ones."""
        ...


class HistoryHost(Protocol):
    """What the history controller needs from the owner of the tree."""

    @property
    def committed_state(self) -> TreeState:
        """State reflecting every emitted operation, without pending text."""
        ...

    def emit(self, payload: Payload) -> Operation:
        """Stamp, apply and queue an operation without recording history."""
        ...
