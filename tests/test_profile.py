"""Tests for profile parsing, merging and coverage percentages."""

from __future__ import annotations

import pytest

from coverage_common import (
    FormatError,
    InconsistentBlockError,
    Profile,
    ProfileBlock,
    find_profile_record,
    format_profiles,
    merge_profiles,
    parse_profiles,
    percent_covered,
    read_profiles,
    total_percent_covered,
)

SAMPLE = """mode: count
example.com/m/a.go:3.14,5.2 1 2
example.com/m/b.go:1.1,2.2 2 0
example.com/m/a.go:1.10,2.5 3 0
"""


def test_parse_groups_by_file_in_first_seen_order() -> None:
    """Group blocks by file name, keeping the order files first appear."""
    profiles = parse_profiles(SAMPLE)
    assert [p.file_name for p in profiles] == ["example.com/m/a.go", "example.com/m/b.go"]
    assert all(p.mode == "count" for p in profiles)


def test_parse_keeps_declared_block_order() -> None:
    """Leave blocks unsorted until they are merged."""
    a = parse_profiles(SAMPLE)[0]
    assert a.blocks == [
        ProfileBlock(3, 14, 5, 2, num_stmt=1, count=2),
        ProfileBlock(1, 10, 2, 5, num_stmt=3, count=0),
    ]


def test_parse_tolerates_blank_lines_and_missing_newline() -> None:
    """Skip blank lines and accept a last line without terminator."""
    profiles = parse_profiles("mode: set\n\n   \nf.go:1.1,1.5 1 1")
    assert profiles[0].blocks == [ProfileBlock(1, 1, 1, 5, 1, 1)]


def test_parse_accepts_crlf_line_endings() -> None:
    """Parse profiles written with Windows line endings."""
    profiles = parse_profiles("mode: set\r\nf.go:1.1,1.5 1 1\r\n")
    assert profiles[0].blocks[0].count == 1


def test_parse_file_name_with_colon() -> None:
    """Take the position after the last colon of the file part."""
    profiles = parse_profiles("mode: set\nC:/src/f.go:1.1,1.5 1 1\n")
    assert profiles[0].file_name == "C:/src/f.go"


def test_mode_line_only_gives_no_profiles() -> None:
    """Return no records for a profile with a mode line and no blocks."""
    assert parse_profiles("mode: atomic\n") == []


@pytest.mark.parametrize(
    "text",
    [
        "",
        "\n\n",
        "f.go:1.1,1.5 1 1\n",
    ],
)
def test_missing_mode_line(text: str) -> None:
    """Reject profiles that do not start with a mode line."""
    with pytest.raises(FormatError, match="missing mode line"):
        parse_profiles(text)


def test_unrecognized_mode() -> None:
    """Reject unknown counting modes."""
    with pytest.raises(FormatError, match="unrecognized mode"):
        parse_profiles("mode: sometimes\n")


@pytest.mark.parametrize(
    "line",
    [
        "f.go:1.1,1.5 1",
        "f.go:1.1,1.5 one 1",
        "f.go:1.1-1.5 1 1",
        "f.go 1.1,1.5 1 1",
        "f.go:1.1,1.5 1 -1",
    ],
)
def test_malformed_data_line(line: str) -> None:
    """Reject data lines that do not match the block grammar."""
    with pytest.raises(FormatError) as excinfo:
        parse_profiles(f"mode: set\n{line}\n")
    assert excinfo.value.line_no == 2
    assert excinfo.value.line == line


def test_inconsistent_modes_across_records() -> None:
    """Fail when concatenated runs declare different modes."""
    text = "mode: set\nf.go:1.1,1.5 1 1\nmode: count\nf.go:1.1,1.5 1 3\n"
    with pytest.raises(FormatError, match="inconsistent mode"):
        parse_profiles(text)


def test_repeated_mode_line_starts_new_record() -> None:
    """Split concatenated runs into separate origin records."""
    text = "mode: count\nf.go:1.1,1.5 1 3\nmode: count\nf.go:1.1,1.5 1 4\n"
    profiles = parse_profiles(text)
    assert len(profiles) == 2
    merged = merge_profiles(profiles)
    assert len(merged) == 1
    assert merged[0].blocks == [ProfileBlock(1, 1, 1, 5, 1, 7)]


def test_merge_sorts_blocks() -> None:
    """Order merged blocks by start, then by end position."""
    profile = Profile("f.go", "count", [
        ProfileBlock(3, 1, 4, 2, 1, 1),
        ProfileBlock(1, 5, 9, 2, 1, 1),
        ProfileBlock(1, 5, 2, 2, 1, 1),
        ProfileBlock(1, 1, 1, 3, 1, 1),
    ])
    merged = merge_profiles([profile])[0]
    assert [b.span for b in merged.blocks] == [
        (1, 1, 1, 3),
        (1, 5, 2, 2),
        (1, 5, 9, 2),
        (3, 1, 4, 2),
    ]


def test_merge_does_not_mutate_inputs() -> None:
    """Build new profiles instead of editing the parsed ones."""
    first = Profile("f.go", "count", [ProfileBlock(2, 1, 2, 5, 1, 3), ProfileBlock(1, 1, 1, 5, 1, 1)])
    merge_profiles([first, first])
    assert first.blocks == [ProfileBlock(2, 1, 2, 5, 1, 3), ProfileBlock(1, 1, 1, 5, 1, 1)]


def test_merge_adds_counts_in_count_mode() -> None:
    """Sum the hit counts of the same span."""
    a = Profile("f.go", "count", [ProfileBlock(1, 1, 2, 1, 2, 3)])
    b = Profile("f.go", "count", [ProfileBlock(1, 1, 2, 1, 2, 4)])
    assert merge_profiles([a, b])[0].blocks[0].count == 7


@pytest.mark.parametrize("mode", ["count", "atomic"])
def test_merge_with_itself_doubles_counts(mode: str) -> None:
    """Double every count when a profile is merged with itself."""
    p = Profile("f.go", mode, [ProfileBlock(1, 1, 2, 1, 2, 3), ProfileBlock(3, 1, 4, 1, 1, 0)])
    merged = merge_profiles([p, p])[0]
    assert [b.count for b in merged.blocks] == [6, 0]
    assert [b.num_stmt for b in merged.blocks] == [2, 1]


def test_merge_with_itself_in_set_mode_is_unchanged() -> None:
    """Combine set-mode counts with a logical or."""
    p = Profile("f.go", "set", [ProfileBlock(1, 1, 2, 1, 2, 1), ProfileBlock(3, 1, 4, 1, 1, 0)])
    merged = merge_profiles([p, p])[0]
    assert merged.blocks == p.blocks


def test_merge_set_mode_or() -> None:
    """Mark a set-mode block covered if any record covered it."""
    a = Profile("f.go", "set", [ProfileBlock(1, 1, 2, 1, 2, 0)])
    b = Profile("f.go", "set", [ProfileBlock(1, 1, 2, 1, 2, 1)])
    assert merge_profiles([a, b])[0].blocks[0].count == 1


def test_merge_rejects_inconsistent_statement_counts() -> None:
    """Fail when two records disagree on a block's statement count."""
    a = Profile("f.go", "count", [ProfileBlock(1, 1, 2, 1, 2, 0)])
    b = Profile("f.go", "count", [ProfileBlock(1, 1, 2, 1, 3, 1)])
    with pytest.raises(InconsistentBlockError, match="f.go:1.1,2.1"):
        merge_profiles([a, b])


def test_merge_rejects_mixed_modes() -> None:
    """Fail when records of one run use different modes."""
    a = Profile("f.go", "count", [])
    b = Profile("g.go", "set", [])
    with pytest.raises(FormatError):
        merge_profiles([a, b])


def test_format_round_trip() -> None:
    """Re-parse serialized profiles into equal records."""
    profiles = merge_profiles(parse_profiles(SAMPLE))
    again = merge_profiles(parse_profiles(format_profiles(profiles)))
    assert again == profiles


def test_read_profiles(tmp_path) -> None:
    """Read and merge a profile file from disk."""
    path = tmp_path / "go.cover"
    path.write_text(SAMPLE)
    profiles = read_profiles(path)
    assert [p.file_name for p in profiles] == ["example.com/m/a.go", "example.com/m/b.go"]
    assert [b.span for b in profiles[0].blocks] == [(1, 10, 2, 5), (3, 14, 5, 2)]


def test_read_profiles_reports_source(tmp_path) -> None:
    """Name the profile file in format errors."""
    path = tmp_path / "bad.cover"
    path.write_text("mode: set\nnonsense\n")
    with pytest.raises(FormatError, match="bad.cover:2"):
        read_profiles(path)


def test_percent_covered_is_statement_weighted() -> None:
    """Weight coverage by the statement count of each block."""
    p = Profile("f.go", "count", [ProfileBlock(1, 1, 2, 1, 3, 5), ProfileBlock(3, 1, 4, 1, 1, 0)])
    assert percent_covered(p) == pytest.approx(75.0)


def test_percent_covered_empty_profile_is_zero() -> None:
    """Report 0% for a profile without statements."""
    assert percent_covered(Profile("f.go", "set", [])) == 0.0
    assert percent_covered(Profile("f.go", "set", [ProfileBlock(1, 1, 1, 2, 0, 1)])) == 0.0


@pytest.mark.parametrize(
    "counts",
    [
        [0, 0, 0],
        [1, 0, 7],
        [9, 9, 9],
    ],
)
def test_percent_bounds(counts: list[int]) -> None:
    """Keep percentages between 0 and 100."""
    p = Profile("f.go", "count", [ProfileBlock(i + 1, 1, i + 1, 3, 2, c) for i, c in enumerate(counts)])
    assert 0.0 <= percent_covered(p) <= 100.0


def test_total_percent_covered() -> None:
    """Aggregate statements across files before dividing."""
    a = Profile("a.go", "set", [ProfileBlock(1, 1, 2, 1, 1, 1)])
    b = Profile("b.go", "set", [ProfileBlock(1, 1, 2, 1, 3, 0)])
    assert total_percent_covered([a, b]) == pytest.approx(25.0)
    assert total_percent_covered([]) == 0.0


def test_find_profile_record_by_suffix() -> None:
    """Prefer exact names, then trailing path elements."""
    profiles = [Profile("example.com/m/pkg/a.go", "set"), Profile("a.go", "set")]
    assert find_profile_record(profiles, "pkg/a.go") is profiles[0]
    assert find_profile_record(profiles, "a.go") is profiles[1]
    assert find_profile_record(profiles, "g/a.go") is None
