"""SQLite-backed operation log and snapshot store."""

import json
import sqlite3
from pathlib import Path

from loguru import logger

from strata.config import SNAPSHOTS_KEPT
from strata.models.node import Snapshot, StatusDef
from strata.models.operation import Operation
from strata.protocols import StoreError
from strata.storage import codec
from strata.storage.schema import get_metadata, migrate_schema, set_metadata

STATUSES_KEY = "statuses"


class SqliteStore:
    """Append-only ops table plus the last few snapshots.

    Every write commits immediately; a failure is raised as ``StoreError``
    and leaves the database as it was.
    """

    def __init__(self, conn: sqlite3.Connection, *, snapshots_kept: int = SNAPSHOTS_KEPT) -> None:
        self.conn = conn
        self.snapshots_kept = snapshots_kept
        migrate_schema(conn)

    @classmethod
    def open(cls, path: Path | str) -> "SqliteStore":
        """Open (creating if needed) a store at ``path``."""
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return cls(sqlite3.connect(str(path)))

    def close(self) -> None:
        self.conn.close()

    def append_op(self, op: Operation) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO ops (seq, op_id, client_id, ts, type, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        op.seq,
                        op.op_id,
                        op.client_id,
                        op.ts,
                        str(op.type),
                        codec.dumps(codec.payload_to_dict(op.payload)),
                    ),
                )
        except sqlite3.Error as exc:
            msg = f"Failed to append op seq {op.seq}: {exc}"
            raise StoreError(msg) from exc

    def load_ops_since(self, seq: int) -> list[Operation]:
        """Return ops with a greater seq, ascending. Undecodable rows are skipped."""
        try:
            rows = self.conn.execute(
                "SELECT seq, op_id, client_id, ts, type, payload FROM ops "
                "WHERE seq > ? ORDER BY seq",
                (seq,),
            ).fetchall()
        except sqlite3.Error as exc:
            msg = f"Failed to load ops after seq {seq}: {exc}"
            raise StoreError(msg) from exc

        ops: list[Operation] = []
        for row_seq, op_id, client_id, ts, op_type, payload in rows:
            try:
                ops.append(
                    codec.op_from_dict(
                        {
                            "seq": row_seq,
                            "op_id": op_id,
                            "client_id": client_id,
                            "ts": ts,
                            "type": op_type,
                            "payload": codec.loads(payload),
                        }
                    )
                )
            except (ValueError, json.JSONDecodeError) as exc:
                logger.warning("Skipping undecodable op at seq {}: {}", row_seq, exc)
        return ops

    def load_snapshot(self) -> Snapshot | None:
        try:
            row = self.conn.execute(
                "SELECT data FROM snapshots ORDER BY seq_after DESC, ts DESC LIMIT 1"
            ).fetchone()
        except sqlite3.Error as exc:
            msg = f"Failed to load snapshot: {exc}"
            raise StoreError(msg) from exc
        if row is None:
            return None
        try:
            return codec.snapshot_from_dict(codec.loads(row[0]))
        except (ValueError, KeyError, json.JSONDecodeError) as exc:
            # The log alone is enough to rebuild.
            logger.warning("Ignoring unreadable snapshot, replaying full log: {}", exc)
            return None

    def save_snapshot(self, snapshot: Snapshot) -> None:
        """Store a snapshot and prune all but the newest ``snapshots_kept``."""
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT OR REPLACE INTO snapshots (snapshot_id, seq_after, ts, data) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        snapshot.snapshot_id,
                        snapshot.seq_after,
                        snapshot.ts,
                        codec.dumps(codec.snapshot_to_dict(snapshot)),
                    ),
                )
                self.conn.execute(
                    "DELETE FROM snapshots WHERE snapshot_id NOT IN ("
                    "SELECT snapshot_id FROM snapshots ORDER BY seq_after DESC, ts DESC LIMIT ?)",
                    (self.snapshots_kept,),
                )
        except sqlite3.Error as exc:
            msg = f"Failed to save snapshot at seq {snapshot.seq_after}: {exc}"
            raise StoreError(msg) from exc

    def max_seq(self) -> int:
        try:
            row = self.conn.execute("SELECT MAX(seq) FROM ops").fetchone()
        except sqlite3.Error as exc:
            msg = f"Failed to read the highest seq: {exc}"
            raise StoreError(msg) from exc
        return row[0] or 0

    def load_statuses(self) -> tuple[StatusDef, ...] | None:
        """Return the status list kept in metadata, or None if unset or unreadable."""
        try:
            raw = get_metadata(self.conn, STATUSES_KEY)
        except sqlite3.Error as exc:
            msg = f"Failed to load status definitions: {exc}"
            raise StoreError(msg) from exc
        if raw is None:
            return None
        try:
            statuses = tuple(codec.status_from_dict(s) for s in codec.loads(raw))
        except (TypeError, AttributeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable status definitions: {}", exc)
            return None
        return statuses or None

    def save_statuses(self, statuses: tuple[StatusDef, ...]) -> None:
        try:
            with self.conn:
                set_metadata(
                    self.conn,
                    STATUSES_KEY,
                    codec.dumps([codec.status_to_dict(s) for s in statuses]),
                )
        except sqlite3.Error as exc:
            msg = f"Failed to save status definitions: {exc}"
            raise StoreError(msg) from exc

    def load_all_ops(self) -> list[Operation]:
        return self.load_ops_since(0)

    def count_ops(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM ops").fetchone()[0]

    def count_snapshots(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM snapshots").fetchone()[0]
