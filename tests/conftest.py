"""
Shared fixtures for the ingestion test suite.

Nothing here talks to Supabase: storage and document tables are replaced by
the in-memory fakes in ``tests/fakes.py``.
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from portfolio_ingest.settings import Settings, reset_settings
from tests.fakes import make_settings


@pytest.fixture(autouse=True)
def reset_settings_cache():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def asset_tree(tmp_path: Path) -> Callable[..., Path]:
    """Create files below ``tmp_path / "assets"``; values are bytes or a size in bytes."""
    root = tmp_path / "assets"
    root.mkdir()

    def _build(files: dict[str, bytes | int]) -> Path:
        for relative, content in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            data = b"x" * content if isinstance(content, int) else content
            path.write_bytes(data)
        return root

    return _build


@pytest.fixture
def write_csv(tmp_path: Path) -> Callable[[str], Path]:
    def _write(content: str) -> Path:
        path = tmp_path / "projects.csv"
        path.write_text(textwrap.dedent(content).lstrip(), encoding="utf-8")
        return path

    return _write
