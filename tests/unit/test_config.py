"""Tests for data directory resolution and logging setup."""

from pathlib import Path

import pytest
from loguru import logger

from strata import config
from strata.logging_config import configure_logging


def test_first_existing_directory_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    missing = tmp_path / "missing"
    present = tmp_path / "present"
    present.mkdir()
    monkeypatch.setattr(config, "DATA_DIRECTORIES", [missing, present])
    assert config.resolve_data_directory() == present


def test_falls_back_to_first_candidate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    candidates = [tmp_path / "a", tmp_path / "b"]
    monkeypatch.setattr(config, "DATA_DIRECTORIES", candidates)
    assert config.resolve_data_directory() == candidates[0]


def test_log_file_gets_debug_records(tmp_path: Path) -> None:
    log_file = tmp_path / "strata.log"
    configure_logging(log_file=log_file)
    logger.debug("Replayed through seq {}", 7)
    configure_logging()
    text = log_file.read_text()
    assert "Replayed through seq 7" in text
    assert "| DEBUG   |" in text
