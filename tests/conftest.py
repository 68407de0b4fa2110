"""Shared fixtures for the coverage tool tests."""

from __future__ import annotations

from pathlib import Path

import pytest


class MemoryFileSystem:
    """In-memory FileSystem keyed by path strings."""

    def __init__(self, files: dict[str, bytes] | None = None) -> None:
        self.files = {str(Path(k)): v for k, v in (files or {}).items()}
        self.checked: list[str] = []

    def is_file(self, path: str) -> bool:
        self.checked.append(path)
        return str(Path(path)) in self.files

    def read_bytes(self, path: str) -> bytes:
        try:
            return self.files[str(Path(path))]
        except KeyError:
            raise FileNotFoundError(path) from None


@pytest.fixture
def memfs():
    return MemoryFileSystem
