"""Session: the application-facing owner of one document's tree.

A session loads a document from a store (snapshot plus trailing operations),
then accepts new operations: each one is stamped, applied to memory at once,
recorded for undo, and queued for durable append in application order.
"""

import time
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Any

from loguru import logger

from strata.config import MAX_UNDO, SNAPSHOT_INTERVAL, TEXT_DEBOUNCE_SECONDS
from strata.core import rank, tree
from strata.core.history import HistoryController
from strata.core.ops import OpFactory, new_id
from strata.core.reducer import reduce, replay, snapshot_of
from strata.models.node import Node, Snapshot, StatusDef, TreeState
from strata.models.operation import (
    AddTag,
    Create,
    Move,
    Operation,
    Payload,
    RemoveTag,
    Restore,
    SetDueDate,
    SetStatus,
    ToggleCollapsed,
    Tombstone,
    UpdateText,
)
from strata.protocols import StoreError, StoreProtocol

Listener = Callable[[TreeState, tuple[Operation, ...]], None]


class PersistenceError(RuntimeError):
    """A change was applied in memory but could not be made durable.

    The operation stays queued and is retried before any later operation is
    appended.
    """

    def __init__(self, message: str, *, operation: Operation | None = None) -> None:
        super().__init__(message)
        self.operation = operation


class Session:
    """Owns the in-memory tree, its history and its write queue."""

    def __init__(
        self,
        store: StoreProtocol,
        *,
        state: TreeState | None = None,
        factory: OpFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
        snapshot_interval: int = SNAPSHOT_INTERVAL,
        max_undo: int = MAX_UNDO,
        debounce: float = TEXT_DEBOUNCE_SECONDS,
    ) -> None:
        self.store = store
        self._state = state or TreeState()
        self._factory = factory or OpFactory(start_seq=self._state.last_seq)
        self._snapshot_interval = snapshot_interval
        self.history = HistoryController(self, max_depth=max_undo, debounce=debounce, clock=clock)
        self._queue: deque[Operation] = deque()
        self._emitted: list[Operation] = []
        self._listeners: list[Listener] = []
        self._depth = 0
        self.ops_since_snapshot = 0

    @classmethod
    def open(
        cls,
        store: StoreProtocol,
        *,
        client_id: str | None = None,
        now_ms: Callable[[], int] | None = None,
        statuses: tuple[StatusDef, ...] | None = None,
        **kwargs: Any,
    ) -> "Session":
        """Load the latest snapshot and trailing operations, and replay them.

        Args:
            store: Log/snapshot store.
            client_id: Writer id for new operations (random if omitted).
            now_ms: Wall clock for operation timestamps.
            statuses: Status definitions for a document that has none saved.
            **kwargs: Passed to the constructor.

        Raises:
            StoreError: If the store cannot be read.
        """
        snapshot = store.load_snapshot()
        since = snapshot.seq_after if snapshot else 0
        ops = store.load_ops_since(since)
        saved = store.load_statuses()
        if saved is None and snapshot is None:
            saved = statuses
        result = replay(snapshot, ops, statuses=saved)
        logger.debug(
            "Loaded {} nodes: snapshot through seq {}, {} trailing ops, {} anomalies",
            len(result.state.nodes), since, len(ops), len(result.anomalies),
        )
        # Rows that no longer decode still own their seq.
        start_seq = max(result.state.last_seq, store.max_seq())
        if start_seq > result.state.last_seq:
            logger.warning(
                "Log holds seq {} but replay reached only {}; continuing after {}",
                start_seq, result.state.last_seq, start_seq,
            )
        factory = OpFactory(client_id=client_id, now_ms=now_ms, start_seq=start_seq)
        session = cls(store, state=result.state, factory=factory, **kwargs)
        session.ops_since_snapshot = len(ops)
        return session

    # --- State access ---

    @property
    def state(self) -> TreeState:
        """The visible tree, including any text still being typed."""
        return self.history.overlay(self._state)

    @property
    def committed_state(self) -> TreeState:
        return self._state

    @property
    def client_id(self) -> str:
        return self._factory.client_id

    @property
    def last_seq(self) -> int:
        return self._factory.seq

    @property
    def pending_writes(self) -> int:
        return len(self._queue)

    def node(self, node_id: str) -> Node:
        """Return a node of the visible tree, raising KeyError if unknown."""
        node = self.state.get(node_id)
        if node is None:
            msg = f"Unknown node: {node_id!r}"
            raise KeyError(msg)
        return node

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(state, ops)`` after every change; returns an unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Core operations ---

    def emit(self, payload: Payload) -> Operation:
        """Stamp, apply and queue one operation, without touching history."""
        op = self._factory.make(payload)
        result = reduce(self._state, op)
        self._state = result.state
        if not result.applied:
            logger.debug("Operation seq {} ({}) was a no-op: {}", op.seq, op.type, result.error)
        self._queue.append(op)
        self._emitted.append(op)
        self.ops_since_snapshot += 1
        return op

    def submit(self, payload: Payload, *, label: str | None = None, record: bool = True) -> Operation:
        """Apply a new operation and schedule it for persistence.

        Pending text is committed first so the new operation lands after it.

        Raises:
            ValueError: If the payload names an unknown status.
            RankError: If the payload carries a malformed rank key.
            PersistenceError: If the store rejected the append (memory keeps the change).
        """
        self._validate(payload)
        with self._batch():
            if record:
                return self.history.perform(payload, label=label)
            self.history.flush_pending_text()
            return self.emit(payload)

    def undo(self) -> bool:
        with self._batch():
            return self.history.undo()

    def redo(self) -> bool:
        with self._batch():
            return self.history.redo()

    def flush_pending_text(self) -> Operation | None:
        with self._batch():
            return self.history.flush_pending_text()

    def edit_text(self, node_id: str, text: str) -> bool:
        """Keystroke-level text edit; committed on flush, idle timeout or the next action."""
        with self._batch():
            changed = self.history.edit_text(node_id, text)
        if changed:
            self._notify(())
        return changed

    def poll(self) -> Operation | None:
        """Commit pending text whose idle delay has elapsed."""
        with self._batch():
            return self.history.poll()

    @contextmanager
    def transaction(self, label: str) -> Iterator["Session"]:
        """Group every operation submitted inside into one undo step."""
        with self._batch():
            self.history.begin_group(label)
            try:
                yield self
            finally:
                self.history.end_group()

    # --- Persistence ---

    def retry_writes(self) -> None:
        """Append queued operations again.

        Raises:
            PersistenceError: If the store still rejects the oldest queued operation.
        """
        error = self._drain()
        if error is not None:
            raise error

    def checkpoint(self) -> Snapshot:
        """Commit pending text and write a snapshot of the committed state now.

        Raises:
            PersistenceError: If queued operations or the snapshot cannot be written.
        """
        self.flush_pending_text()
        return self._write_snapshot()

    def _write_snapshot(self) -> Snapshot:
        self.retry_writes()
        snapshot = snapshot_of(self._state, ts=self._factory.now())
        try:
            self.store.save_snapshot(snapshot)
        except StoreError as exc:
            msg = f"Could not save snapshot at seq {snapshot.seq_after}: {exc}"
            raise PersistenceError(msg) from exc
        self.ops_since_snapshot = 0
        logger.debug("Snapshot saved through seq {}", snapshot.seq_after)
        return snapshot

    def close(self, *, snapshot: bool = True) -> None:
        """Commit pending text, write everything queued and (optionally) take a snapshot."""
        self.flush_pending_text()
        if snapshot and self.ops_since_snapshot:
            self.checkpoint()
        else:
            self.retry_writes()

    @contextmanager
    def _batch(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._settle()

    def _settle(self) -> None:
        ops = tuple(self._emitted)
        self._emitted.clear()
        if ops:
            self._notify(ops)
        error = self._drain()
        if error is not None:
            raise error
        if self.ops_since_snapshot >= self._snapshot_interval:
            try:
                self._write_snapshot()
            except PersistenceError as exc:
                logger.warning("Periodic snapshot failed, will retry: {}", exc)

    def _drain(self) -> PersistenceError | None:
        while self._queue:
            op = self._queue[0]
            try:
                self.store.append_op(op)
            except StoreError as exc:
                logger.warning(
                    "Append of seq {} failed; {} op(s) queued: {}", op.seq, len(self._queue), exc
                )
                msg = f"Operation seq {op.seq} is not durable yet: {exc}"
                return PersistenceError(msg, operation=op)
            self._queue.popleft()
        return None

    def _notify(self, ops: tuple[Operation, ...]) -> None:
        state = self.state
        for listener in list(self._listeners):
            listener(state, ops)

    def _validate(self, payload: Payload) -> None:
        status = getattr(payload, "status", None)
        if status is not None and status not in self._state.status_ids:
            msg = f"Unknown status {status!r}; expected one of {self._state.status_ids!r}"
            raise ValueError(msg)
        pos = getattr(payload, "pos", None)
        if pos is not None and not rank.is_valid(pos):
            msg = f"Invalid rank key: {pos!r}"
            raise rank.RankError(msg)

    # --- Editing helpers ---

    def create_node(
        self,
        parent_id: str | None = None,
        text: str = "",
        *,
        after_id: str | None = None,
        index: int | None = None,
        status: str | None = None,
        tags: tuple[str, ...] = (),
        due_date: int | None = None,
    ) -> str:
        """Create a node and return its id.

        Placement: directly after ``after_id`` (a sibling under ``parent_id``),
        at ``index`` among the visible children, or at the end.

        Raises:
            KeyError: If the parent or ``after_id`` is unknown.
            ValueError: If ``after_id`` is not a child of ``parent_id``.
        """
        state = self._state
        if parent_id is not None and parent_id not in state.nodes:
            msg = f"Unknown parent: {parent_id!r}"
            raise KeyError(msg)
        if after_id is not None:
            self._require_sibling_parent(after_id, parent_id)
            pos = tree.position_after(state, after_id)
        elif index is not None:
            pos = tree.position_at_index(state, parent_id, index)
        else:
            pos = tree.position_at_end(state, parent_id)
        node_id = new_id()
        self.submit(
            Create(
                node_id=node_id,
                parent_id=parent_id,
                pos=pos,
                text=text,
                status=status or state.default_status,
                tags=tags,
                due_date=due_date,
            ),
            label="create",
        )
        return node_id

    def create_sibling_below(self, node_id: str, text: str = "") -> str:
        node = self.node(node_id)
        return self.create_node(node.parent_id, text, after_id=node_id, status=None)

    def update_text(self, node_id: str, text: str) -> Operation:
        return self.submit(UpdateText(node_id, text), label="edit text")

    def move_node(
        self,
        node_id: str,
        parent_id: str | None,
        *,
        after_id: str | None = None,
        index: int | None = None,
    ) -> Operation:
        """Move a node under ``parent_id``, after a sibling, at an index, or at the end."""
        self.flush_pending_text()
        state = self._state
        if after_id is not None:
            self._require_sibling_parent(after_id, parent_id)
            pos = tree.position_after(state, after_id)
        elif index is not None:
            pos = tree.position_at_index(state, parent_id, index)
        else:
            pos = tree.position_at_end(state, parent_id)
        return self.submit(Move(node_id, parent_id, pos), label="move")

    def indent(self, node_id: str) -> bool:
        """Make the node the last child of its previous sibling."""
        self.flush_pending_text()
        new_parent = tree.previous_sibling(self._state, node_id)
        if new_parent is None:
            return False
        with self.transaction("indent"):
            pos = tree.position_at_end(self._state, new_parent.id)
            self.submit(Move(node_id, new_parent.id, pos))
            if new_parent.collapsed:
                self.submit(ToggleCollapsed(new_parent.id, collapsed=False))
        return True

    def outdent(self, node_id: str) -> bool:
        """Move the node out to sit directly after its parent."""
        self.flush_pending_text()
        node = self.node(node_id)
        if node.parent_id is None:
            return False
        parent = self._state.nodes[node.parent_id]
        pos = tree.position_after(self._state, parent.id)
        self.submit(Move(node_id, parent.parent_id, pos), label="outdent")
        return True

    def duplicate(self, node_id: str) -> str:
        """Copy a node's fields into a new sibling right after it."""
        node = self.node(node_id)
        return self.create_node(
            node.parent_id,
            node.text,
            after_id=node_id,
            status=node.status,
            tags=node.tags,
            due_date=node.due_date,
        )

    def delete_subtree(self, node_id: str) -> int:
        """Tombstone a node and its live descendants as one undo step.

        Returns the number of nodes tombstoned.
        """
        self.flush_pending_text()
        self.node(node_id)
        targets = [n.id for n in reversed(tree.descendants(self._state, node_id))]
        targets.append(node_id)
        count = 0
        with self.transaction("delete"):
            for target in targets:
                if not self._state.nodes[target].deleted:
                    self.submit(Tombstone(target))
                    count += 1
        return count

    def restore_node(self, node_id: str) -> bool:
        """Undelete a node under its last parent. Returns False if it was not deleted."""
        node = self.node(node_id)
        if not node.deleted:
            return False
        self.submit(Restore(node_id), label="restore")
        return True

    def set_status(self, node_id: str, status: str) -> Operation:
        return self.submit(SetStatus(node_id, status), label="set status")

    def toggle_collapsed(self, node_id: str) -> Operation:
        node = self.node(node_id)
        return self.submit(ToggleCollapsed(node_id, collapsed=not node.collapsed), label="toggle")

    def add_tag(self, node_id: str, tag: str) -> Operation | None:
        """Add a tag; blank tags and tags already present are ignored."""
        tag = tag.strip()
        if not tag or tag in self.node(node_id).tags:
            return None
        return self.submit(AddTag(node_id, tag), label="add tag")

    def remove_tag(self, node_id: str, tag: str) -> Operation:
        return self.submit(RemoveTag(node_id, tag), label="remove tag")

    def set_due_date(self, node_id: str, due_date: int | None) -> Operation:
        return self.submit(SetDueDate(node_id, due_date), label="set due date")

    # --- Status definitions ---
    #
    # The definition list is document configuration, not log content; the
    # store keeps it apart from snapshots, which may be discarded.

    @property
    def statuses(self) -> tuple[StatusDef, ...]:
        return self._state.statuses

    def add_status(self, status: StatusDef) -> None:
        if status.id in self._state.status_ids:
            msg = f"Status {status.id!r} already exists"
            raise ValueError(msg)
        self._set_statuses((*self._state.statuses, status))

    def update_status(self, status_id: str, **changes: Any) -> None:
        self._require_status(status_id)
        changes.pop("id", None)
        self._set_statuses(
            tuple(replace(s, **changes) if s.id == status_id else s for s in self._state.statuses)
        )

    def remove_status(self, status_id: str, replacement_id: str) -> int:
        """Remove a status, moving every live node that uses it to ``replacement_id``.

        Returns the number of nodes reassigned.
        """
        self._require_status(status_id)
        self._require_status(replacement_id)
        if status_id == replacement_id:
            msg = "Replacement status must differ from the removed one"
            raise ValueError(msg)
        affected = [
            n.id for n in self._state.nodes.values() if not n.deleted and n.status == status_id
        ]
        with self._batch():
            for node_id in affected:
                self.submit(SetStatus(node_id, replacement_id), record=False)
        self.history.replace_status(status_id, replacement_id)
        self._set_statuses(tuple(s for s in self._state.statuses if s.id != status_id))
        return len(affected)

    def reorder_statuses(self, ordered_ids: list[str]) -> None:
        by_id = {s.id: s for s in self._state.statuses}
        if sorted(ordered_ids) != sorted(by_id):
            msg = f"Reorder must list every status exactly once: {ordered_ids!r}"
            raise ValueError(msg)
        self._set_statuses(tuple(by_id[i] for i in ordered_ids))

    def _require_sibling_parent(self, after_id: str, parent_id: str | None) -> None:
        sibling = self._state.nodes.get(after_id)
        if sibling is None:
            msg = f"Unknown node: {after_id!r}"
            raise KeyError(msg)
        if sibling.parent_id != parent_id:
            msg = f"Node {after_id!r} is not a child of {parent_id!r}"
            raise ValueError(msg)

    def _require_status(self, status_id: str) -> None:
        if status_id not in self._state.status_ids:
            msg = f"Unknown status: {status_id!r}"
            raise KeyError(msg)

    def _set_statuses(self, statuses: tuple[StatusDef, ...]) -> None:
        self._state = replace(self._state, statuses=statuses)
        try:
            self.store.save_statuses(statuses)
        except StoreError as exc:
            msg = f"Could not save status definitions: {exc}"
            raise PersistenceError(msg) from exc
        finally:
            self._notify(())


def init(store: StoreProtocol, **kwargs: Any) -> Session:
    """Open a session over ``store``; see :meth:`Session.open`."""
    return Session.open(store, **kwargs)
