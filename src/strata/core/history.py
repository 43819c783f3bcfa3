"""Undo/redo through compensating operations.

The log is the permanent record, so undo never removes or rewinds anything.
Each user action is recorded as a pair of per-node images (before and
after). Undo submits new forward operations that bring the touched nodes
back to their "before" images; redo does the same toward the "after" images.
A second client replaying the log sees an undo as an ordinary edit.

Keystrokes are batched: a burst of text edits in one node becomes a single
``updateText`` and a single undo step.
"""

import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace

from loguru import logger

from strata.config import MAX_UNDO, TEXT_DEBOUNCE_SECONDS
from strata.models.node import Node, TreeState
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
from strata.protocols import HistoryHost

# (node_id, image); image is None when the node did not exist.
NodeImage = tuple[str, Node | None]


@dataclass(frozen=True)
class HistoryEntry:
    """One undoable step."""

    label: str
    before: tuple[NodeImage, ...]
    after: tuple[NodeImage, ...]


@dataclass
class _PendingText:
    node_id: str
    before: Node
    text: str
    deadline: float


@dataclass
class _Group:
    label: str
    depth: int = 1
    before: dict[str, Node | None] = field(default_factory=dict)
    after: dict[str, Node | None] = field(default_factory=dict)


def compensate(node_id: str, current: Node | None, target: Node | None) -> list[Payload]:
    """Payloads that take a node from ``current`` to ``target``.

    Only fields that differ produce an operation. A ``None`` target means the
    node should not exist, which in an append-only tree means tombstoned.
    """
    if target is None:
        if current is not None and not current.deleted:
            return [Tombstone(node_id)]
        return []

    if current is None:
        payloads: list[Payload] = [
            Create(
                node_id=node_id,
                parent_id=target.parent_id,
                pos=target.pos,
                text=target.text,
                status=target.status,
                tags=target.tags,
                due_date=target.due_date,
                collapsed=target.collapsed,
            )
        ]
        if target.deleted:
            payloads.append(Tombstone(node_id, deleted_at=target.deleted_at))
        return payloads

    payloads = []
    if current.deleted and not target.deleted:
        payloads.append(Restore(node_id))
    if (current.parent_id, current.pos) != (target.parent_id, target.pos):
        payloads.append(Move(node_id, target.parent_id, target.pos))
    if current.text != target.text:
        payloads.append(UpdateText(node_id, target.text))
    if current.status != target.status:
        payloads.append(SetStatus(node_id, target.status))
    if current.collapsed != target.collapsed:
        payloads.append(ToggleCollapsed(node_id, collapsed=target.collapsed))
    if current.due_date != target.due_date:
        payloads.append(SetDueDate(node_id, target.due_date))
    payloads.extend(_tag_changes(node_id, current.tags, target.tags))
    if target.deleted and not current.deleted:
        payloads.append(Tombstone(node_id, deleted_at=target.deleted_at))
    return payloads


def _tag_changes(node_id: str, current: tuple[str, ...], target: tuple[str, ...]) -> list[Payload]:
    # Tags keep display order, so rebuild everything after the common prefix.
    common = 0
    while common < min(len(current), len(target)) and current[common] == target[common]:
        common += 1
    changes: list[Payload] = [RemoveTag(node_id, t) for t in current[common:]]
    changes.extend(AddTag(node_id, t) for t in target[common:])
    return changes


class HistoryController:
    """Bounded undo/redo stacks of compensating records, plus text batching."""

    def __init__(
        self,
        host: HistoryHost,
        *,
        max_depth: int = MAX_UNDO,
        debounce: float = TEXT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._host = host
        self._undo: deque[HistoryEntry] = deque(maxlen=max_depth)
        self._redo: deque[HistoryEntry] = deque(maxlen=max_depth)
        self._debounce = debounce
        self._clock = clock
        self._pending: _PendingText | None = None
        self._group: _Group | None = None

    @property
    def can_undo(self) -> bool:
        return bool(self._undo) or self._pending_changes_text()

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def undo_labels(self) -> list[str]:
        """Labels on the undo stack, most recent last."""
        return [entry.label for entry in self._undo]

    @property
    def pending_node_id(self) -> str | None:
        return self._pending.node_id if self._pending else None

    # --- Recording ---

    def capture(self, node_ids: Iterable[str]) -> tuple[NodeImage, ...]:
        state = self._host.committed_state
        return tuple((node_id, state.nodes.get(node_id)) for node_id in node_ids)

    def perform(self, payload: Payload, *, label: str | None = None) -> Operation:
        """Emit an operation and record it as one undo step (or part of a group)."""
        self.flush_pending_text()
        before = self.capture([payload.node_id])
        op = self._host.emit(payload)
        after = self.capture([payload.node_id])
        if after != before:
            self._record(HistoryEntry(label or str(payload.type), before, after))
        return op

    def begin_group(self, label: str) -> None:
        """Start recording everything performed until :meth:`end_group` as one step."""
        if self._group is not None:
            self._group.depth += 1
            return
        self.flush_pending_text()
        self._group = _Group(label=label)

    def end_group(self) -> None:
        group = self._group
        if group is None:
            return
        group.depth -= 1
        if group.depth > 0:
            return
        self._group = None
        if tuple(group.before.items()) != tuple(group.after.items()):
            self._record(
                HistoryEntry(
                    label=group.label,
                    before=tuple(group.before.items()),
                    after=tuple(group.after.items()),
                )
            )

    def _record(self, entry: HistoryEntry) -> None:
        if self._group is not None:
            for node_id, image in entry.before:
                self._group.before.setdefault(node_id, image)
            for node_id, image in entry.after:
                self._group.after[node_id] = image
            return
        self._undo.append(entry)
        self._redo.clear()

    # --- Text batching ---

    def edit_text(self, node_id: str, text: str) -> bool:
        """Record a keystroke-level text change without emitting an operation yet.

        Returns False if the node does not exist or is deleted.
        """
        node = self._host.committed_state.nodes.get(node_id)
        if node is None or node.deleted:
            return False
        if self._pending is not None and self._pending.node_id != node_id:
            self.flush_pending_text()
        deadline = self._clock() + self._debounce
        if self._pending is None:
            self._pending = _PendingText(node_id=node_id, before=node, text=text, deadline=deadline)
        else:
            self._pending.text = text
            self._pending.deadline = deadline
        return True

    def poll(self) -> Operation | None:
        """Commit the pending burst if its idle deadline has passed."""
        if self._pending is not None and self._clock() >= self._pending.deadline:
            return self.flush_pending_text()
        return None

    def flush_pending_text(self) -> Operation | None:
        """Commit the pending burst now as one operation and one undo step."""
        pending = self._pending
        if pending is None:
            return None
        self._pending = None
        node = self._host.committed_state.nodes.get(pending.node_id)
        if node is None or node.text == pending.text:
            return None
        op = self._host.emit(UpdateText(pending.node_id, pending.text))
        logger.debug("Committed text burst for {} as seq {}", pending.node_id, op.seq)
        self._record(
            HistoryEntry(
                label="edit text",
                before=((pending.node_id, pending.before),),
                after=self.capture([pending.node_id]),
            )
        )
        return op

    def overlay(self, state: TreeState) -> TreeState:
        """``state`` with the pending burst's text shown in place."""
        pending = self._pending
        if pending is None:
            return state
        node = state.nodes.get(pending.node_id)
        if node is None or node.text == pending.text:
            return state
        nodes = dict(state.nodes)
        nodes[pending.node_id] = replace(node, text=pending.text)
        return replace(state, nodes=nodes)

    def _pending_changes_text(self) -> bool:
        if self._pending is None:
            return False
        node = self._host.committed_state.nodes.get(self._pending.node_id)
        return node is not None and node.text != self._pending.text

    # --- Undo / redo ---

    def undo(self) -> bool:
        """Step back one action. Returns False if there is nothing to undo."""
        self.flush_pending_text()
        if not self._undo:
            return False
        entry = self._undo.pop()
        self._restore_images(reversed(entry.before))
        self._redo.append(entry)
        logger.debug("Undid {!r}", entry.label)
        return True

    def redo(self) -> bool:
        """Step forward one action. Returns False if there is nothing to redo."""
        self.flush_pending_text()
        if not self._redo:
            return False
        entry = self._redo.pop()
        self._restore_images(entry.after)
        self._undo.append(entry)
        logger.debug("Redid {!r}", entry.label)
        return True

    def replace_status(self, old: str, new: str) -> None:
        """Rewrite recorded images so undo and redo never bring back ``old``."""

        def remap(images: tuple[NodeImage, ...]) -> tuple[NodeImage, ...]:
            return tuple(
                (node_id, replace(image, status=new))
                if image is not None and image.status == old
                else (node_id, image)
                for node_id, image in images
            )

        for stack in (self._undo, self._redo):
            entries = [replace(e, before=remap(e.before), after=remap(e.after)) for e in stack]
            stack.clear()
            stack.extend(entries)
        if self._pending is not None and self._pending.before.status == old:
            self._pending.before = replace(self._pending.before, status=new)
        if self._group is not None:
            for images in (self._group.before, self._group.after):
                images.update(remap(tuple(images.items())))

    def _restore_images(self, images: Iterable[NodeImage]) -> None:
        for node_id, target in images:
            state = self._host.committed_state
            if target is not None and target.status not in state.status_ids:
                target = replace(target, status=state.default_status)
            current = state.nodes.get(node_id)
            for payload in compensate(node_id, current, target):
                self._host.emit(payload)
