"""Local-first outline tree with a replayable operation log."""

from strata.core.reducer import apply_one, replay
from strata.models.node import Node, Snapshot, StatusDef, TreeState
from strata.models.operation import Operation, OpType
from strata.protocols import StoreError, StoreProtocol
from strata.session import PersistenceError, Session, init

__all__ = [
    "Node",
    "OpType",
    "Operation",
    "PersistenceError",
    "Session",
    "Snapshot",
    "StatusDef",
    "StoreError",
    "StoreProtocol",
    "TreeState",
    "apply_one",
    "init",
    "replay",
]
