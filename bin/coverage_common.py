#!/usr/bin/env python3
"""
Shared coverage profile data structures, parsing and merging logic.

A profile is the text written by an instrumented test run:

    mode: set
    example.com/pkg/file.go:10.2,12.16 3 1
    example.com/pkg/file.go:15.2,20.16 5 0

Each data line is one block: start line.col, end line.col, number of
statements in the block, and how often the block ran.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

MODES = ("set", "count", "atomic")

LINE_RE = re.compile(r"^(.+):(\d+)\.(\d+),(\d+)\.(\d+) (\d+) (\d+)$")


class CoverError(Exception):
    """Base class for coverage processing errors."""


class FormatError(CoverError, ValueError):
    """Malformed profile text."""

    def __init__(self, message: str, source: str = "<profile>", line_no: int = 0, line: str = ""):
        self.source = source
        self.line_no = line_no
        self.line = line
        if line_no:
            message = f"{source}:{line_no}: {message}: {line!r}"
        else:
            message = f"{source}: {message}"
        super().__init__(message)


class InconsistentBlockError(CoverError):
    """Two records of the same block disagree on its statement count."""


class OffsetOutOfRangeError(CoverError):
    """A block position does not fit the source text it is applied to."""


@dataclass(frozen=True)
class ProfileBlock:
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    num_stmt: int
    count: int

    @property
    def span(self) -> Tuple[int, int, int, int]:
        return (self.start_line, self.start_col, self.end_line, self.end_col)


@dataclass
class Profile:
    file_name: str
    mode: str
    blocks: list = field(default_factory=list)

    @property
    def total_statements(self) -> int:
        return sum(b.num_stmt for b in self.blocks)

    @property
    def covered_statements(self) -> int:
        return sum(b.num_stmt for b in self.blocks if b.count > 0)


def parse_profiles(text: str, source: str = "<profile>") -> List[Profile]:
    """Parse profile text into one Profile per file per origin record.

    Every ``mode:`` line starts a new origin record, so a profile made by
    concatenating several runs yields several records for the same file.
    Blocks keep their declared order; use merge_profiles to combine them.
    """
    profiles: List[Profile] = []
    current: Dict[str, Profile] = {}
    mode = None

    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue

        if line.startswith("mode:"):
            declared = line[len("mode:"):].strip()
            if declared not in MODES:
                raise FormatError("unrecognized mode", source, line_no, raw)
            if mode is not None and declared != mode:
                raise FormatError(f"inconsistent mode, profile started as {mode!r}", source, line_no, raw)
            mode = declared
            current = {}
            continue

        if mode is None:
            raise FormatError("missing mode line", source, line_no, raw)

        match = LINE_RE.match(line)
        if not match:
            raise FormatError("line does not match profile format", source, line_no, raw)

        file_name = match.group(1)
        start_line, start_col, end_line, end_col, num_stmt, count = (int(g) for g in match.groups()[1:])

        profile = current.get(file_name)
        if profile is None:
            profile = Profile(file_name=file_name, mode=mode)
            current[file_name] = profile
            profiles.append(profile)
        profile.blocks.append(
            ProfileBlock(
                start_line=start_line,
                start_col=start_col,
                end_line=end_line,
                end_col=end_col,
                num_stmt=num_stmt,
                count=count,
            )
        )

    if mode is None:
        raise FormatError("missing mode line", source)

    return profiles


def merge_profiles(profiles: Iterable[Profile]) -> List[Profile]:
    """Merge records of the same file into one Profile with sorted, unique blocks."""
    grouped: Dict[str, List[Profile]] = {}
    mode = None

    for profile in profiles:
        if mode is None:
            mode = profile.mode
        elif profile.mode != mode:
            raise FormatError(
                f"inconsistent mode for {profile.file_name}: {profile.mode!r}, expected {mode!r}"
            )
        grouped.setdefault(profile.file_name, []).append(profile)

    merged = []
    for file_name, records in grouped.items():
        blocks = sorted((b for p in records for b in p.blocks), key=lambda b: b.span)
        merged.append(Profile(file_name=file_name, mode=mode, blocks=_fold_blocks(file_name, mode, blocks)))
    return merged


def _fold_blocks(file_name: str, mode: str, blocks: List[ProfileBlock]) -> List[ProfileBlock]:
    folded: List[ProfileBlock] = []
    for b in blocks:
        if folded and folded[-1].span == b.span:
            last = folded[-1]
            if last.num_stmt != b.num_stmt:
                raise InconsistentBlockError(
                    f"{file_name}:{_format_span(b)}: inconsistent statement count, "
                    f"changed from {last.num_stmt} to {b.num_stmt}"
                )
            if mode == "set":
                count = max(last.count, b.count)
            else:
                count = last.count + b.count
            folded[-1] = ProfileBlock(*last.span, num_stmt=last.num_stmt, count=count)
            continue
        folded.append(b)
    return folded


def _format_span(b: ProfileBlock) -> str:
    return f"{b.start_line}.{b.start_col},{b.end_line}.{b.end_col}"


def format_profiles(profiles: Iterable[Profile]) -> str:
    """Serialize profiles back to profile text under a single mode line."""
    profiles = list(profiles)
    if not profiles:
        return ""
    lines = [f"mode: {profiles[0].mode}"]
    for profile in profiles:
        for b in profile.blocks:
            lines.append(f"{profile.file_name}:{_format_span(b)} {b.num_stmt} {b.count}")
    return "\n".join(lines) + "\n"


def read_profiles(profile_path: Path) -> List[Profile]:
    """Read a profile file and return its merged per-file profiles."""
    with open(profile_path, encoding="utf-8") as f:
        text = f.read()
    return merge_profiles(parse_profiles(text, source=str(profile_path)))


def percent(covered: int, total: int) -> float:
    if total == 0:
        return 0.0
    return covered / total * 100


def percent_covered(profile: Profile) -> float:
    """Percentage of the profile's statements that ran at least once."""
    return percent(profile.covered_statements, profile.total_statements)


def total_percent_covered(profiles: Iterable[Profile]) -> float:
    """Statement-weighted coverage across several profiles."""
    covered = total = 0
    for profile in profiles:
        covered += profile.covered_statements
        total += profile.total_statements
    return percent(covered, total)


def find_profile_record(profiles: Iterable[Profile], name: str) -> Optional[Profile]:
    """Return the profile named ``name``, else the first whose name ends with ``/name``."""
    profiles = list(profiles)
    for profile in profiles:
        if profile.file_name == name:
            return profile
    for profile in profiles:
        if profile.file_name.endswith("/" + name):
            return profile
    return None
