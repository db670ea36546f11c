"""Shared fixtures: an initialised board in a temp directory."""

from __future__ import annotations

import pytest

from kanban.config import init_config
from kanban.store import Board


@pytest.fixture
def board(tmp_path):
    init_config(tmp_path)
    return Board(tmp_path)


@pytest.fixture
def write_config(tmp_path):
    """Overwrite .kanban/columns.toml with the given TOML text."""

    def _write(text: str) -> None:
        (tmp_path / ".kanban" / "columns.toml").write_text(text)

    return _write
