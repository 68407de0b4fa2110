#!/usr/bin/env python3
"""
Locating the source files and profiles that coverage data refers to.

Profile file names are recorded by the instrumenting run, usually as an
import path ("example.com/mod/pkg/file.go") rather than a path on this
machine, so resolution searches a list of caller-ordered roots.
"""

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from coverage_common import CoverError

DEFAULT_PROFILE_NAME = "go.cover"


class SourceNotFoundError(CoverError, FileNotFoundError):
    """No root holds a file for a profile's file name."""

    def __init__(self, file_name: str, roots: Sequence[str]):
        self.file_name = file_name
        self.roots = list(roots)
        searched = ", ".join(str(r) for r in self.roots) or "(no roots)"
        super().__init__(f"can't find source for {file_name!r}; searched {searched}")


class FileSystem(Protocol):
    def is_file(self, path: str) -> bool:
        ...

    def read_bytes(self, path: str) -> bytes:
        ...


class LocalFileSystem:
    """FileSystem backed by the local disk."""

    def is_file(self, path: str) -> bool:
        return Path(path).is_file()

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()


def _candidates(file_name: str, roots: Sequence[str], packages: Optional[Dict[str, str]]):
    for root in roots:
        yield str(Path(root, file_name))

    if packages:
        pkg_dir = packages.get(os.path.dirname(file_name))
        if pkg_dir:
            yield str(Path(pkg_dir, os.path.basename(file_name)))

    # Package-qualified names: drop leading import path elements, longest
    # remainder first, and look for the rest under each root.
    parts = [p for p in file_name.split("/") if p]
    for i in range(1, len(parts)):
        remainder = Path(*parts[i:])
        for root in roots:
            yield str(Path(root, remainder))


def resolve_source(file_name: str, roots: Sequence[str], fs: FileSystem,
                   packages: Optional[Dict[str, str]] = None) -> str:
    """Return the path of the first existing file matching ``file_name``."""
    for candidate in _candidates(file_name, roots, packages):
        if fs.is_file(candidate):
            return candidate
    raise SourceNotFoundError(file_name, roots)


def find_packages(file_names: Iterable[str], go: str = "go") -> Dict[str, str]:
    """Ask the Go toolchain where the packages named by file_names live."""
    pkgs: List[str] = []
    for name in file_names:
        if name.startswith(".") or os.path.isabs(name):
            continue
        pkg = os.path.dirname(name)
        if pkg and pkg not in pkgs:
            pkgs.append(pkg)
    if not pkgs:
        return {}

    try:
        result = subprocess.run(
            [go, "list", "-e", "-json", *pkgs],
            capture_output=True,
            text=True,
            timeout=60
        )
    except FileNotFoundError:
        print(f"Warning: {go} not found, skipping package lookup", file=sys.stderr)
        return {}
    except subprocess.TimeoutExpired:
        print(f"Warning: {go} list timed out, skipping package lookup", file=sys.stderr)
        return {}

    if result.returncode != 0:
        print(f"Warning: go list failed: {result.stderr.strip()}", file=sys.stderr)
        return {}

    return parse_go_list(result.stdout)


def parse_go_list(output: str) -> Dict[str, str]:
    """Map ImportPath to Dir from the concatenated JSON objects of go list -json."""
    dirs = {}
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        while pos < len(output) and output[pos].isspace():
            pos += 1
        if pos >= len(output):
            break
        pkg, pos = decoder.raw_decode(output, pos)
        if pkg.get("Dir"):
            dirs[pkg["ImportPath"]] = pkg["Dir"]
    return dirs


def find_profile(start: Optional[Path] = None, filename: str = DEFAULT_PROFILE_NAME) -> Path:
    """Search for a profile named ``filename`` from start up to the filesystem root."""
    d = (start or Path.cwd()).resolve()
    for candidate_dir in (d, *d.parents):
        candidate = candidate_dir / filename
        if candidate.is_file():
            return candidate
    raise FileNotFoundError(f"{filename} file not found")
