"""Configuration constants for strata."""

import os
from pathlib import Path

# Take a snapshot after this many applied operations.
SNAPSHOT_INTERVAL: int = 200

# Snapshots retained by the SQLite store; older ones are pruned on save.
SNAPSHOTS_KEPT: int = 3

# Depth of each of the undo and redo stacks.
MAX_UNDO: int = 200

# Idle time after the last keystroke before a text burst is committed.
TEXT_DEBOUNCE_SECONDS: float = 0.3

DB_FILENAME: str = "strata.db"

# Directory with data. First directory which is found is used.
DATA_DIRECTORIES: list[Path] = [
    Path("~/.local/share/strata").expanduser(),
    Path("~/.strata").expanduser(),
    Path(f"/run/user/{os.getuid()}/strata"),
]


def resolve_data_directory() -> Path:
    """Return the first existing data directory, or the preferred default."""
    for candidate in DATA_DIRECTORIES:
        if candidate.is_dir():
            return candidate
    return DATA_DIRECTORIES[0]
