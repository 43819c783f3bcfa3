"""Plain-dict encoding of operations, nodes and snapshots for storage."""

import json
from dataclasses import asdict, fields
from typing import Any

from strata.models.node import Node, OrderKey, Snapshot, StatusDef
from strata.models.operation import PAYLOAD_TYPES, Operation, OpType, Payload


def payload_to_dict(payload: Payload) -> dict[str, Any]:
    data = asdict(payload)
    if "tags" in data:
        data["tags"] = list(data["tags"])
    return data


def payload_from_dict(op_type: OpType, data: dict[str, Any]) -> Payload:
    """Build a payload, ignoring fields this version does not know.

    Raises:
        ValueError: If a required field is missing.
    """
    cls = PAYLOAD_TYPES[op_type]
    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in known}
    if "tags" in kwargs:
        kwargs["tags"] = tuple(kwargs["tags"])
    try:
        return cls(**kwargs)
    except TypeError as exc:
        msg = f"Malformed {op_type} payload: {exc}"
        raise ValueError(msg) from exc


def op_to_dict(op: Operation) -> dict[str, Any]:
    return {
        "op_id": op.op_id,
        "client_id": op.client_id,
        "seq": op.seq,
        "ts": op.ts,
        "type": str(op.type),
        "payload": payload_to_dict(op.payload),
    }


def op_from_dict(data: dict[str, Any]) -> Operation:
    """Decode an operation.

    Raises:
        ValueError: For an unknown operation type or a malformed record.
    """
    try:
        op_type = OpType(data["type"])
        return Operation(
            op_id=data["op_id"],
            client_id=data["client_id"],
            seq=int(data["seq"]),
            ts=int(data["ts"]),
            payload=payload_from_dict(op_type, data["payload"]),
        )
    except KeyError as exc:
        msg = f"Operation record is missing {exc}"
        raise ValueError(msg) from exc


def node_to_dict(node: Node) -> dict[str, Any]:
    return {
        "id": node.id,
        "parent_id": node.parent_id,
        "pos": node.pos,
        "text": node.text,
        "status": node.status,
        "tags": list(node.tags),
        "due_date": node.due_date,
        "collapsed": node.collapsed,
        "deleted": node.deleted,
        "deleted_at": node.deleted_at,
        "stamps": {group: list(key) for group, key in node.stamps.items()},
    }


def _order_key(value: list[Any]) -> OrderKey:
    seq, ts, client_id, op_id = value
    return (int(seq), int(ts), str(client_id), str(op_id))


def node_from_dict(data: dict[str, Any]) -> Node:
    return Node(
        id=data["id"],
        parent_id=data.get("parent_id"),
        pos=data["pos"],
        text=data.get("text", ""),
        status=data.get("status", "todo"),
        tags=tuple(data.get("tags", ())),
        due_date=data.get("due_date"),
        collapsed=bool(data.get("collapsed", False)),
        deleted=bool(data.get("deleted", False)),
        deleted_at=data.get("deleted_at"),
        stamps={group: _order_key(key) for group, key in data.get("stamps", {}).items()},
    )


def status_to_dict(status: StatusDef) -> dict[str, Any]:
    return asdict(status)


def status_from_dict(data: dict[str, Any]) -> StatusDef:
    known = {f.name for f in fields(StatusDef)}
    return StatusDef(**{k: v for k, v in data.items() if k in known})


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "snapshot_id": snapshot.snapshot_id,
        "seq_after": snapshot.seq_after,
        "ts": snapshot.ts,
        "statuses": [status_to_dict(s) for s in snapshot.statuses],
        "nodes": [node_to_dict(n) for n in snapshot.nodes.values()],
    }


def snapshot_from_dict(data: dict[str, Any]) -> Snapshot:
    nodes = [node_from_dict(n) for n in data.get("nodes", [])]
    statuses = tuple(status_from_dict(s) for s in data.get("statuses", []))
    kwargs: dict[str, Any] = {}
    if statuses:
        kwargs["statuses"] = statuses
    return Snapshot(
        nodes={n.id: n for n in nodes},
        seq_after=int(data["seq_after"]),
        ts=int(data.get("ts", 0)),
        snapshot_id=data.get("snapshot_id", ""),
        **kwargs,
    )


def dumps(data: Any) -> str:
    return json.dumps(data, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def loads(raw: str) -> Any:
    return json.loads(raw)
