"""Shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from fakes import make_jpeg


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture()
def labels_file(tmp_path: Path) -> Path:
    path = tmp_path / "labels.txt"
    path.write_text("1 yen\n5 yen\n10 yen\n50 yen\n100 yen\n500 yen\nother\n", encoding="utf-8")
    return path
