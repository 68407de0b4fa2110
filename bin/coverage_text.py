#!/usr/bin/env python3
"""
Per-line source annotation and the text coverage report.

A line's count is the minimum count of every block active on it, so a
line is shown as covered only when all the code on it ran.
"""

import math
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Sequence, TextIO

from coverage_common import (
    CoverError, OffsetOutOfRangeError, Profile, find_profile_record, percent_covered,
)
from coverage_source import FileSystem, LocalFileSystem, resolve_source

DEFAULT_COUNT_WIDTH = 4
NORM_LEVELS = 10


@dataclass
class ReportConfig:
    show_source: bool = False
    normalize: bool = False
    count_width: int = DEFAULT_COUNT_WIDTH
    roots: list = field(default_factory=lambda: ["."])
    packages: Optional[Dict[str, str]] = None
    cpp_path: Optional[str] = None


@dataclass(frozen=True)
class Boundary:
    offset: int
    start: bool
    count: int
    index: int = 0
    empty: bool = False

    @property
    def sort_key(self):
        # Ends sort before starts at the same offset, except the end of an
        # empty block, which must follow its own start.
        return (self.offset, self.start or self.empty, self.index)


class AnnotatedLine(NamedTuple):
    text: str
    count: int


def _line_starts(src: bytes) -> List[int]:
    starts = [0]
    pos = src.find(b"\n")
    while pos != -1:
        starts.append(pos + 1)
        pos = src.find(b"\n", pos + 1)
    return starts


def _offset(starts: List[int], src: bytes, line: int, col: int) -> int:
    if line < 1 or line > len(starts) or col < 1:
        raise OffsetOutOfRangeError(f"position {line}.{col} is outside the source ({len(starts)} lines)")
    offset = starts[line - 1] + col - 1
    if offset > len(src):
        raise OffsetOutOfRangeError(f"position {line}.{col} is past the end of the source ({len(src)} bytes)")
    return offset


def normalized_count(count: int, max_count: int) -> int:
    """Rescale count to 0..NORM_LEVELS on a log scale relative to max_count."""
    if count <= 0:
        return 0
    if max_count <= 1:
        norm = 0.8
    else:
        norm = math.log(count) / math.log(max_count)
    return int(math.floor(norm * (NORM_LEVELS - 1))) + 1


def boundaries(profile: Profile, src: bytes, normalize: bool = False) -> List[Boundary]:
    """Compute the sorted start/end boundaries of profile's blocks within src."""
    starts = _line_starts(src)
    max_count = max((b.count for b in profile.blocks), default=0)

    result = []
    for b in profile.blocks:
        start = _offset(starts, src, b.start_line, b.start_col)
        end = _offset(starts, src, b.end_line, b.end_col)
        if end < start:
            raise OffsetOutOfRangeError(
                f"{profile.file_name}: block {b.start_line}.{b.start_col},{b.end_line}.{b.end_col} ends before it starts"
            )
        count = normalized_count(b.count, max_count) if normalize else b.count
        result.append(Boundary(offset=start, start=True, count=count, index=len(result)))
        result.append(Boundary(offset=end, start=False, count=count, index=len(result), empty=end == start))

    result.sort(key=lambda bd: bd.sort_key)
    return result


def annotate_lines(src: bytes, bounds: Sequence[Boundary]) -> List[AnnotatedLine]:
    """Walk src and attach the minimum active block count to every line."""
    active = Counter()
    current = -1
    min_count = -1
    lines = []
    line = bytearray()
    bi = 0

    for i, ch in enumerate(src):
        if bi < len(bounds) and bounds[bi].offset == i:
            while bi < len(bounds) and bounds[bi].offset == i:
                b = bounds[bi]
                if b.start:
                    active[b.count] += 1
                else:
                    active[b.count] -= 1
                    if active[b.count] <= 0:
                        del active[b.count]
                bi += 1
            current = min(active) if active else -1

        line.append(ch)
        if ch == 0x0A:
            lines.append(AnnotatedLine(line.decode("utf-8", errors="replace"), min_count))
            line = bytearray()
            min_count = current
        elif current != -1 and (min_count == -1 or current < min_count):
            min_count = current

    if line:
        lines.append(AnnotatedLine(line.decode("utf-8", errors="replace"), min_count))
    return lines


def format_line(line: AnnotatedLine, width: int = DEFAULT_COUNT_WIDTH) -> str:
    if line.count == -1:
        return f"{'-':>{width}} {line.text}"
    return f"{line.count:>{width}} {line.text}"


def annotate_source(profile: Profile, src: bytes, config: ReportConfig) -> str:
    """Return src with every line prefixed by its coverage count."""
    bounds = boundaries(profile, src, normalize=config.normalize)
    return "".join(format_line(line, config.count_width) for line in annotate_lines(src, bounds))


def text_output(w: TextIO, profiles: Sequence[Profile], files: Sequence[str], config: ReportConfig,
                fs: Optional[FileSystem] = None) -> bool:
    """Write the per-file report. Returns False if any file could not be reported."""
    fs = fs or LocalFileSystem()
    ok = True

    if files:
        selected = []
        for name in files:
            profile = find_profile_record(profiles, name)
            if profile is None:
                print(f"Error: no coverage profile found for file {name!r}", file=sys.stderr)
                ok = False
            elif profile not in selected:
                selected.append(profile)
    else:
        selected = list(profiles)

    for profile in selected:
        if config.show_source:
            try:
                path = resolve_source(profile.file_name, config.roots, fs, config.packages)
                body = annotate_source(profile, fs.read_bytes(path), config)
            except (CoverError, OSError) as e:
                print(f"Error: {profile.file_name}: {e}", file=sys.stderr)
                ok = False
            else:
                w.write(body)
                if body and not body.endswith("\n"):
                    w.write("\n")
                w.write("\n")
        w.write(f"{percent_covered(profile):5.1f}% {profile.file_name}\n")

    return ok
