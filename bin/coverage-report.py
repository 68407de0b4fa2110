#!/usr/bin/env python3
"""
Line Coverage Report

Reads a coverage profile written by 'go test -coverprofile=go.cover' and
prints, for each file, the percentage of statements covered. With --src the
source is listed with the minimum block count of each line; with --func
coverage is reported per function instead.

Usage:
    coverage-report.py [--profile go.cover] [--src] [--norm] [FILE...]
    coverage-report.py --func [PATTERN]

Exit codes:
    0 - report written
    1 - bad profile, or some files could not be reported
"""

import argparse
import re
import sys
from pathlib import Path

from coverage_common import CoverError, read_profiles
from coverage_funcs import func_output
from coverage_source import DEFAULT_PROFILE_NAME, find_packages, find_profile
from coverage_text import DEFAULT_COUNT_WIDTH, ReportConfig, text_output


def main(argv=None):
    parser = argparse.ArgumentParser(description="Report per-line and per-function coverage of a coverage profile")
    parser.add_argument("--profile", help=f"Coverage profile to read (default: nearest {DEFAULT_PROFILE_NAME})")
    parser.add_argument("--func", action="store_true", help="Report coverage for each function matching PATTERN")
    parser.add_argument("--norm", action="store_true", help="Normalize counts to [0, 10]")
    parser.add_argument("--src", action="store_true", help="Show source annotated with coverage per line")
    parser.add_argument("--root", action="append", dest="roots",
                        help="Directory to search for source files; repeatable (default: .)")
    parser.add_argument("--go-list", action="store_true", help="Ask 'go list' where packages live")
    parser.add_argument("--cpp", dest="cpp_path", help="C preprocessor to run on C sources (e.g. clang)")
    parser.add_argument("--width", type=int, default=DEFAULT_COUNT_WIDTH, help="Width of the count column")
    parser.add_argument("-o", "--output", help="File for output (default: stdout)")
    parser.add_argument("args", nargs="*", metavar="FILE", help="Files to report, or the function PATTERN with --func")

    args = parser.parse_args(argv)

    if args.profile:
        profile_path = Path(args.profile)
    else:
        try:
            profile_path = find_profile()
        except FileNotFoundError as e:
            print(f"Error: could not find profile: {e}", file=sys.stderr)
            return 1

    try:
        profiles = read_profiles(profile_path)
    except (CoverError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    config = ReportConfig(
        show_source=args.src,
        normalize=args.norm,
        count_width=args.width,
        roots=args.roots or ["."],
        cpp_path=args.cpp_path,
    )
    if args.go_list:
        config.packages = find_packages(p.file_name for p in profiles)

    if args.output:
        try:
            out = open(args.output, "w", encoding="utf-8")
        except OSError as e:
            print(f"Error: can't write {args.output}: {e}", file=sys.stderr)
            return 1
    else:
        out = sys.stdout
    try:
        if args.func:
            pattern = args.args[0] if args.args else "."
            try:
                re.compile(pattern)
            except re.error as e:
                print(f"Error: bad function pattern {pattern!r}: {e}", file=sys.stderr)
                return 1
            ok = func_output(out, profiles, pattern, config.roots,
                             packages=config.packages, cpp_path=config.cpp_path)
        else:
            ok = text_output(out, profiles, args.args, config)
    finally:
        if out is not sys.stdout:
            out.close()

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
