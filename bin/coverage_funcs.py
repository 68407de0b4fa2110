#!/usr/bin/env python3
"""
Per-function coverage.

Function extents come from a source-symbol locator chosen by file suffix:
Go sources are scanned for gofmt-style top-level declarations, C sources are
parsed with pycparser.
"""

import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, TextIO, Tuple

import pycparser
import pycparser_fake_libc
from pycparser import c_ast

from coverage_common import CoverError, Profile, percent
from coverage_source import FileSystem, LocalFileSystem, resolve_source

GO_FUNC_RE = re.compile(r"^func\s*(?:\([^)]*\)\s*)?([A-Za-z_]\w*)")

C_SUFFIXES = (".c", ".h")


class UnsupportedSourceError(CoverError):
    """No function locator understands the source file."""


@dataclass(frozen=True)
class FunctionExtent:
    name: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int


def function_coverage(f: FunctionExtent, profile: Profile) -> Tuple[int, int]:
    """Return (covered, total) statements of the blocks inside f."""
    covered = total = 0
    for b in profile.blocks:
        if b.start_line > f.end_line or (b.start_line == f.end_line and b.start_col >= f.end_col):
            break
        if b.end_line < f.start_line or (b.end_line == f.start_line and b.end_col <= f.start_col):
            continue
        total += b.num_stmt
        if b.count > 0:
            covered += b.num_stmt
    return covered, total


def _in_raw_string(line: str, in_raw: bool) -> bool:
    """Return whether a Go raw string is still open at the end of line."""
    quote = None
    k = 0
    while k < len(line):
        ch = line[k]
        if in_raw:
            if ch == "`":
                in_raw = False
        elif quote:
            if ch == "\\":
                k += 1
            elif ch == quote:
                quote = None
        elif ch == "`":
            in_raw = True
        elif ch in "\"'":
            quote = ch
        elif line.startswith("//", k):
            break
        k += 1
    return in_raw


def go_functions(src: str) -> List[FunctionExtent]:
    """Find top-level Go functions, relying on gofmt layout.

    A declaration starts with ``func`` in column 1 and its body ends either on
    the same line or with a ``}`` in column 1. Lines inside backtick raw
    strings are not taken as the end of a body.
    """
    lines = src.splitlines()
    funcs = []
    i = 0
    while i < len(lines):
        match = GO_FUNC_RE.match(lines[i])
        if not match:
            i += 1
            continue

        name = match.group(1)
        start = i
        code = lines[i].split("//", 1)[0].rstrip()
        if code.endswith("}") and code.count("{") == code.count("}") and "{" in code:
            funcs.append(FunctionExtent(name, start + 1, 1, start + 1, len(code) + 1))
            i += 1
            continue

        in_raw = _in_raw_string(lines[i], False)
        j = i + 1
        while j < len(lines):
            if not in_raw and (lines[j].startswith("}") or GO_FUNC_RE.match(lines[j])):
                break
            in_raw = _in_raw_string(lines[j], in_raw)
            j += 1
        if j < len(lines) and lines[j].startswith("}"):
            funcs.append(FunctionExtent(name, start + 1, 1, j + 1, 2))
            i = j + 1
        else:
            # Bodyless declaration (implemented in assembly).
            i = j
    return funcs


def _c_code_only(src: str) -> str:
    """Blank out comments and preprocessor lines, keeping line and column positions."""
    out = []
    i = 0
    n = len(src)
    quote = None
    at_line_start = True
    while i < n:
        ch = src[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(src[i + 1])
                i += 1
            elif ch == quote or ch == "\n":
                quote = None
        elif src.startswith("//", i):
            j = src.find("\n", i)
            j = n if j == -1 else j
            out.append(" " * (j - i))
            i = j
            continue
        elif src.startswith("/*", i):
            j = src.find("*/", i + 2)
            j = n if j == -1 else j + 2
            out.append("".join(c if c == "\n" else " " for c in src[i:j]))
            i = j
            continue
        elif ch == "#" and at_line_start:
            j = src.find("\n", i)
            j = n if j == -1 else j
            out.append(" " * (j - i))
            i = j
            continue
        else:
            if ch in "\"'":
                quote = ch
            out.append(ch)
        if ch == "\n":
            at_line_start = True
        elif not ch.isspace():
            at_line_start = False
        i += 1
    return "".join(out)


def _closing_brace(code: str, start_line: int) -> Tuple[int, int]:
    """Return (line, col) one past the brace closing the first body after start_line."""
    depth = 0
    lines = code.split("\n")
    for line_no in range(start_line - 1, len(lines)):
        text = lines[line_no]
        quote = None
        k = 0
        while k < len(text):
            ch = text[k]
            if quote:
                if ch == "\\":
                    k += 1
                elif ch == quote:
                    quote = None
            elif ch in "\"'":
                quote = ch
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return line_no + 1, k + 2
            k += 1
    raise CoverError(f"unbalanced braces after line {start_line}")


class _FuncDefVisitor(c_ast.NodeVisitor):
    def __init__(self, filename: Optional[str] = None):
        self.filename = filename
        self.defs = []

    def visit_FuncDef(self, node):
        if self.filename is None or node.decl.coord.file == self.filename:
            self.defs.append((node.decl.name, node.decl.coord.line))


def c_functions(path: str, src: str, cpp_path: Optional[str] = None) -> List[FunctionExtent]:
    """Find C function definitions with pycparser.

    Without cpp_path the source is parsed as is, with comments and
    preprocessor lines blanked out. With cpp_path it is run through the preprocessor against the
    fake libc headers shipped with pycparser_fake_libc.
    """
    code = _c_code_only(src)
    if cpp_path:
        ast = pycparser.parse_file(
            path, use_cpp=True,
            cpp_path=cpp_path,
            cpp_args=["-E", r"-I{}".format(pycparser_fake_libc.directory)]
        )
        visitor = _FuncDefVisitor(path)
    else:
        ast = pycparser.CParser().parse(code, path)
        visitor = _FuncDefVisitor()
    visitor.visit(ast)

    funcs = []
    for name, line in visitor.defs:
        end_line, end_col = _closing_brace(code, line)
        funcs.append(FunctionExtent(name, line, 1, end_line, end_col))
    return funcs


def find_functions(path: str, src: bytes, cpp_path: Optional[str] = None) -> List[FunctionExtent]:
    """Return the function extents in the source file at path."""
    text = src.decode("utf-8", errors="replace")
    suffix = Path(path).suffix
    if suffix == ".go":
        return go_functions(text)
    if suffix in C_SUFFIXES:
        try:
            return c_functions(path, text, cpp_path)
        except (pycparser.c_parser.ParseError, RuntimeError) as e:
            raise CoverError(f"can't parse {path}: {e}") from e
    raise UnsupportedSourceError(f"no function locator for {path!r}")


def func_output(w: TextIO, profiles: Sequence[Profile], pattern: str, roots: Sequence[str],
                fs: Optional[FileSystem] = None, packages=None, cpp_path: Optional[str] = None) -> bool:
    """Write coverage for every function whose name matches pattern, then the total."""
    fs = fs or LocalFileSystem()
    name_re = re.compile(pattern)
    ok = True
    rows = []
    covered = total = 0

    for profile in profiles:
        try:
            path = resolve_source(profile.file_name, roots, fs, packages)
            funcs = find_functions(path, fs.read_bytes(path), cpp_path)
        except (CoverError, OSError) as e:
            print(f"Error: {profile.file_name}: {e}", file=sys.stderr)
            ok = False
            continue

        for f in funcs:
            if not name_re.search(f.name):
                continue
            c, t = function_coverage(f, profile)
            rows.append((f"{profile.file_name}:{f.start_line}:", f.name, f"{percent(c, t):.1f}%"))
            covered += c
            total += t

    rows.append(("total:", "(statements)", f"{percent(covered, total):.1f}%"))
    loc_width = max(len(r[0]) for r in rows)
    name_width = max(len(r[1]) for r in rows)
    for loc, name, pct in rows:
        w.write(f"{loc:{loc_width}s} {name:{name_width}s} {pct:>6s}\n")
    return ok
