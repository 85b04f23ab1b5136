"""Shared test fixtures."""

from __future__ import annotations

import io
import stat
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable ``#!/bin/sh`` script and return its path."""

    def _make(name: str, body: str, *, directory: Path | None = None) -> Path:
        folder = directory or tmp_path
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / name
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def console() -> Console:
    """Console writing to an in-memory buffer, no colors."""
    return Console(file=io.StringIO(), width=200, color_system=None, highlight=False)