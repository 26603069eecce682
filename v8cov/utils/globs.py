"""Glob matching with ``**`` support, shared by the script filter and file discovery."""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives into separate patterns."""
    start = pattern.find("{")
    if start == -1:
        if "}" in pattern:
            raise ValueError(f"Unbalanced '}}' in glob pattern: {pattern!r}")
        return [pattern]

    depth = 0
    options: list[str] = []
    current_start = start + 1
    for i in range(start, len(pattern)):
        ch = pattern[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                options.append(pattern[current_start:i])
                prefix, suffix = pattern[:start], pattern[i + 1:]
                expanded: list[str] = []
                for option in options:
                    expanded.extend(expand_braces(prefix + option + suffix))
                return expanded
        elif ch == "," and depth == 1:
            options.append(pattern[current_start:i])
            current_start = i + 1
    raise ValueError(f"Unbalanced '{{' in glob pattern: {pattern!r}")


def _translate_segment(segment: str, pattern: str) -> str:
    out = []
    i = 0
    while i < len(segment):
        ch = segment[i]
        if ch == "*":
            # Runs of stars inside a segment behave like a single star
            while i + 1 < len(segment) and segment[i + 1] == "*":
                i += 1
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            end = segment.find("]", i + 2 if segment[i + 1:i + 2] in ("!", "^") else i + 1)
            if end == -1:
                raise ValueError(f"Unterminated character class in glob pattern: {pattern!r}")
            body = segment[i + 1:end]
            if body[:1] in ("!", "^"):
                body = "^" + body[1:]
            out.append(f"[{body.replace(chr(92), chr(92) * 2)}]")
            i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


def _translate_single(pattern: str) -> str:
    parts = pattern.split("/")
    regex = ""
    for i, part in enumerate(parts):
        last = i == len(parts) - 1
        if part == "**":
            regex += ".*" if last else "(?:.*/)?"
        else:
            regex += _translate_segment(part, pattern)
            if not last:
                regex += "/"
    return regex


@lru_cache(maxsize=512)
def translate_glob(pattern: str) -> re.Pattern:
    """Compile a glob into a regex.

    ``*`` and ``?`` never cross a ``/``; a ``**`` segment matches zero or
    more whole segments. Raises ``ValueError`` for malformed patterns.
    """
    alternatives = [_translate_single(p) for p in expand_braces(pattern)]
    try:
        return re.compile("(?:" + "|".join(alternatives) + r")\Z", re.DOTALL)
    except re.error as e:
        raise ValueError(f"Invalid glob pattern {pattern!r}: {e}") from e


def matches_glob(path: str, pattern: str) -> bool:
    return translate_glob(pattern).match(path) is not None


def matches_any(path: str, patterns: list[str]) -> bool:
    return any(matches_glob(path, p) for p in patterns)


def find_files(root: str | Path, include: list[str], exclude: list[str]) -> list[str]:
    """List files under ``root`` (relative, posix style) selected by the patterns."""
    root = Path(root)
    if not root.is_dir():
        return []

    found = []
    for dir_path, _sub_dirs, file_names in os.walk(root):
        for name in file_names:
            rel = Path(dir_path, name).relative_to(root).as_posix()
            if matches_any(rel, include) and not matches_any(rel, exclude):
                found.append(rel)
    return sorted(found)
