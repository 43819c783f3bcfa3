"""Fake implementations for testing the outline core."""

from strata.models.node import Snapshot, StatusDef
from strata.models.operation import Operation, Payload
from strata.protocols import StoreError


class FakeStore:
    """In-memory fake for SqliteStore.

    Keeps ops, snapshots and the status list in memory, records calls for
    assertions, and can be told to fail the next appends or snapshot writes.
    """

    def __init__(self, *, snapshot: Snapshot | None = None, ops: list[Operation] | None = None) -> None:
        self.ops: list[Operation] = list(ops or [])
        self.snapshots: list[Snapshot] = [snapshot] if snapshot else []
        self.append_calls = 0
        self.fail_appends = 0
        self.fail_snapshots = False
        self.statuses: tuple[StatusDef, ...] | None = None

    def append_op(self, op: Operation) -> None:
        """Store the op, or raise StoreError while failures are armed."""
        self.append_calls += 1
        if self.fail_appends:
            self.fail_appends -= 1
            msg = f"FakeStore: append of seq {op.seq} failed"
            raise StoreError(msg)
        self.ops.append(op)

    def load_snapshot(self) -> Snapshot | None:
        return self.snapshots[-1] if self.snapshots else None

    def load_ops_since(self, seq: int) -> list[Operation]:
        return sorted((op for op in self.ops if op.seq > seq), key=lambda op: op.seq)

    def save_snapshot(self, snapshot: Snapshot) -> None:
        if self.fail_snapshots:
            msg = "FakeStore: snapshot write failed"
            raise StoreError(msg)
        self.snapshots.append(snapshot)

    def max_seq(self) -> int:
        return max((op.seq for op in self.ops), default=0)

    def load_statuses(self) -> tuple[StatusDef, ...] | None:
        return self.statuses

    def save_statuses(self, statuses: tuple[StatusDef, ...]) -> None:
        self.statuses = statuses


class FakeClock:
    """Manually advanced clock.

    Calling the instance returns monotonic seconds; ``ms()`` returns a
    strictly increasing wall-clock value in milliseconds.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._ms = 1_700_000_000_000

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ms(self) -> int:
        self._ms += 1
        return self._ms


def make_op(
    seq: int,
    payload: Payload,
    *,
    ts: int | None = None,
    client_id: str = "c1",
    op_id: str | None = None,
) -> Operation:
    """Build an operation with deterministic ids for reducer tests."""
    return Operation(
        op_id=op_id or f"op-{client_id}-{seq}",
        client_id=client_id,
        seq=seq,
        ts=1000 + seq if ts is None else ts,
        payload=payload,
    )
