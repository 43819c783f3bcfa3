"""CLI for a strata outline stored in SQLite (edit, inspect, compact, verify)."""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from strata.config import DB_FILENAME, resolve_data_directory
from strata.core import due_dates, tree
from strata.core.ops import new_id
from strata.core.reducer import replay
from strata.logging_config import configure_logging
from strata.models.node import Node
from strata.session import PersistenceError, Session
from strata.storage import codec
from strata.storage.schema import get_metadata, set_metadata
from strata.storage.sqlite_store import SqliteStore

app = typer.Typer(help="strata: a local-first outline with a replayable operation log.")

DataDirOption = Annotated[
    Path | None,
    typer.Option("--data-dir", "-d", help="Directory holding the outline database"),
]


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: Annotated[
        Path | None,
        typer.Option("--log-file", envvar="STRATA_LOG_FILE", help="Also write debug logs here"),
    ] = None,
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)


def _db_path(data_dir: Path | None) -> Path:
    return (data_dir or resolve_data_directory()) / DB_FILENAME


def _client_id(store: SqliteStore) -> str:
    """This database's writer id, created on first use."""
    client_id = get_metadata(store.conn, "client_id")
    if client_id is None:
        client_id = new_id()
        with store.conn:
            set_metadata(store.conn, "client_id", client_id)
    return client_id


@contextmanager
def _open_session(data_dir: Path | None, *, create: bool = False) -> Iterator[Session]:
    """Open the outline, then write queued ops on success.

    Caller errors and persistence failures are logged and exit with status 1.
    """
    db_path = _db_path(data_dir)
    if not create and not db_path.exists():
        logger.error("Outline database not found: {}. Run 'init' first.", db_path)
        raise typer.Exit(1)
    store = SqliteStore.open(db_path)
    try:
        session = Session.open(store, client_id=_client_id(store))
        try:
            yield session
            session.close(snapshot=False)
        except KeyError as exc:
            logger.error("{}", exc.args[0] if exc.args else exc)
            raise typer.Exit(1) from exc
        except ValueError as exc:
            logger.error("{}", exc)
            raise typer.Exit(1) from exc
        except PersistenceError as exc:
            logger.error("Change may not be saved: {}", exc)
            raise typer.Exit(1) from exc
    finally:
        store.close()


def _resolve(session: Session, ref: str) -> str:
    """Resolve a full node id or a unique id prefix."""
    nodes = session.state.nodes
    if ref in nodes:
        return ref
    matches = [node_id for node_id in nodes if node_id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        msg = f"No node matches {ref!r}"
        raise KeyError(msg)
    msg = f"Ambiguous node id {ref!r} ({len(matches)} matches)"
    raise ValueError(msg)


def _format_row(node: Node, depth: int, statuses: dict[str, str]) -> str:
    parts = ["  " * depth + f"- [{statuses.get(node.status, node.status)}] {node.title}"]
    parts.extend(f"#{tag}" for tag in node.tags)
    if node.due_date is not None:
        parts.append(f"(due {due_dates.format_due_date(node.due_date)})")
    if node.collapsed:
        parts.append("[+]")
    if node.deleted:
        parts.append("(deleted)")
    parts.append(f"<{node.id[:8]}>")
    return " ".join(parts)


@app.command()
def init(data_dir: DataDirOption = None) -> None:
    """Create an empty outline database."""
    db_path = _db_path(data_dir)
    if db_path.exists():
        typer.echo(f"Outline already exists: {db_path}")
        return
    with _open_session(data_dir, create=True) as session:
        session.checkpoint()
    typer.echo(f"Created outline at {db_path}")


@app.command()
def add(
    text: str = typer.Argument(..., help="Node text (first line is the title)"),
    parent: Annotated[str | None, typer.Option("--parent", "-p", help="Parent node id")] = None,
    after: Annotated[
        str | None, typer.Option("--after", "-a", help="Insert after this sibling")
    ] = None,
    status: Annotated[str | None, typer.Option("--status", "-s", help="Status id")] = None,
    tags: Annotated[list[str] | None, typer.Option("--tag", "-t", help="Tag (repeatable)")] = None,
    due: Annotated[str | None, typer.Option("--due", help="Due date, YYYY-MM-DD")] = None,
    data_dir: DataDirOption = None,
) -> None:
    """Add a node and print its id."""
    with _open_session(data_dir) as session:
        after_id = _resolve(session, after) if after else None
        if after_id is not None:
            parent_id = session.node(after_id).parent_id
        else:
            parent_id = _resolve(session, parent) if parent else None
        node_id = session.create_node(
            parent_id,
            text,
            after_id=after_id,
            status=status,
            tags=tuple(dict.fromkeys(t.strip() for t in tags or () if t.strip())),
            due_date=due_dates.parse_due_date(due) if due else None,
        )
    logger.debug("Created node {}", node_id)
    typer.echo(node_id)


@app.command()
def edit(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    text: str = typer.Argument(..., help="New text"),
    data_dir: DataDirOption = None,
) -> None:
    """Replace a node's text."""
    with _open_session(data_dir) as session:
        session.update_text(_resolve(session, node), text)


@app.command()
def move(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    parent: Annotated[
        str | None, typer.Option("--parent", "-p", help="New parent (top level if omitted)")
    ] = None,
    after: Annotated[
        str | None, typer.Option("--after", "-a", help="Place after this sibling")
    ] = None,
    index: Annotated[
        int | None, typer.Option("--index", "-i", help="Position among the new siblings")
    ] = None,
    data_dir: DataDirOption = None,
) -> None:
    """Move a node under a new parent or next to a sibling."""
    with _open_session(data_dir) as session:
        node_id = _resolve(session, node)
        after_id = _resolve(session, after) if after else None
        if after_id is not None:
            parent_id = session.node(after_id).parent_id
        else:
            parent_id = _resolve(session, parent) if parent else None
        before = session.node(node_id)
        session.move_node(node_id, parent_id, after_id=after_id, index=index)
        if session.node(node_id) == before:
            logger.warning("Move was not applied (a node cannot move below itself)")


@app.command()
def delete(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    data_dir: DataDirOption = None,
) -> None:
    """Delete a node and its subtree (restorable)."""
    with _open_session(data_dir) as session:
        count = session.delete_subtree(_resolve(session, node))
    typer.echo(f"Deleted {count} node(s)")


@app.command()
def restore(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    data_dir: DataDirOption = None,
) -> None:
    """Restore a deleted node."""
    with _open_session(data_dir) as session:
        if not session.restore_node(_resolve(session, node)):
            typer.echo("Node is not deleted")


@app.command()
def status(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    value: str = typer.Argument(..., help="Status id"),
    data_dir: DataDirOption = None,
) -> None:
    """Set a node's status."""
    with _open_session(data_dir) as session:
        session.set_status(_resolve(session, node), value)


@app.command()
def statuses(data_dir: DataDirOption = None) -> None:
    """List the status definitions."""
    with _open_session(data_dir) as session:
        for s in session.statuses:
            final = "  (final)" if s.final else ""
            typer.echo(f"  {s.id}: {s.label}{final}")


@app.command()
def tag(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    name: str = typer.Argument(..., help="Tag"),
    data_dir: DataDirOption = None,
) -> None:
    """Add a tag to a node."""
    with _open_session(data_dir) as session:
        session.add_tag(_resolve(session, node), name)


@app.command()
def untag(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    name: str = typer.Argument(..., help="Tag"),
    data_dir: DataDirOption = None,
) -> None:
    """Remove a tag from a node."""
    with _open_session(data_dir) as session:
        session.remove_tag(_resolve(session, node), name)


@app.command()
def due(
    node: str = typer.Argument(..., help="Node id or unique prefix"),
    date: str | None = typer.Argument(None, help="Due date (YYYY-MM-DD); omit to clear"),
    data_dir: DataDirOption = None,
) -> None:
    """Set or clear a node's due date."""
    with _open_session(data_dir) as session:
        session.set_due_date(
            _resolve(session, node), due_dates.parse_due_date(date) if date else None
        )


@app.command(name="tree")
def tree_cmd(
    root: Annotated[str | None, typer.Option("--root", "-r", help="Show below this node")] = None,
    expand: bool = typer.Option(False, "--expand", "-e", help="Show children of collapsed nodes"),
    due_filter: Annotated[
        str, typer.Option("--due", help="Due filter: all, overdue, today, week")
    ] = "all",
    data_dir: DataDirOption = None,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Print the outline."""
    with _open_session(data_dir) as session:
        if due_filter not in due_dates.DUE_FILTERS:
            msg = f"Unknown due filter {due_filter!r}; expected one of {due_dates.DUE_FILTERS}"
            raise ValueError(msg)
        state = session.state
        root_id = _resolve(session, root) if root else None
        rows = [
            row
            for row in tree.flatten(state, root_id, expand_collapsed=expand)
            if due_dates.matches_filter(row.node.due_date, due_filter)  # type: ignore[arg-type]
        ]
        if output_json:
            data = [
                {
                    "id": row.node.id,
                    "parent_id": row.node.parent_id,
                    "depth": row.depth,
                    "text": row.node.text,
                    "status": row.node.status,
                    "tags": list(row.node.tags),
                    "due_date": row.node.due_date,
                    "urgency": due_dates.urgency(row.node.due_date),
                    "collapsed": row.node.collapsed,
                }
                for row in rows
            ]
            typer.echo(json.dumps(data, indent=2))
            return
        labels = {s.id: s.label for s in state.statuses}
        if not rows:
            typer.echo("(empty)")
        for row in rows:
            typer.echo(_format_row(row.node, row.depth, labels))


@app.command()
def log(
    limit: int = typer.Option(20, "--limit", "-n", help="Show the last N operations"),
    data_dir: DataDirOption = None,
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the most recent operations in the log."""
    with _open_session(data_dir) as session:
        store: SqliteStore = session.store  # type: ignore[assignment]
        ops = store.load_all_ops()[-limit:] if limit > 0 else []
        if output_json:
            typer.echo(json.dumps([codec.op_to_dict(op) for op in ops], indent=2))
            return
        for op in ops:
            fields = codec.payload_to_dict(op.payload)
            node_id = fields.pop("node_id")
            detail = " ".join(f"{k}={v!r}" for k, v in fields.items())
            typer.echo(f"{op.seq:>6}  {op.type:<16} {node_id[:8]}  {detail}".rstrip())


@app.command()
def compact(data_dir: DataDirOption = None) -> None:
    """Write a snapshot of the current state."""
    with _open_session(data_dir) as session:
        snapshot = session.checkpoint()
    typer.echo(f"Snapshot at seq {snapshot.seq_after} ({len(snapshot.nodes)} nodes)")


@app.command()
def verify(data_dir: DataDirOption = None) -> None:
    """Check that a full log replay matches snapshot-plus-tail loading."""
    with _open_session(data_dir) as session:
        store: SqliteStore = session.store  # type: ignore[assignment]
        loaded = session.state
        full = replay(None, store.load_all_ops(), statuses=session.statuses)
        if full.state.nodes != loaded.nodes or full.state.last_seq != loaded.last_seq:
            differing = sorted(
                node_id
                for node_id in set(full.state.nodes) | set(loaded.nodes)
                if full.state.nodes.get(node_id) != loaded.nodes.get(node_id)
            )
            logger.error(
                "Replay mismatch: {} node(s) differ, seq {} vs {}",
                len(differing), full.state.last_seq, loaded.last_seq,
            )
            raise typer.Exit(1)
    typer.echo(
        f"OK: {len(full.state.nodes)} nodes, seq {full.state.last_seq}, "
        f"{len(full.anomalies)} anomalies"
    )
