"""Source map v3 decoding and position lookups.

Lines are 1-based and columns 0-based, matching the positions JS tooling
hands around. Lookups only search within the requested line.
"""

from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import NamedTuple, Optional

GREATEST_LOWER_BOUND = 1
LEAST_UPPER_BOUND = -1

_BASE64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_BASE64_VALUES = {ch: i for i, ch in enumerate(_BASE64)}


class Segment(NamedTuple):
    generated_column: int
    source: Optional[int] = None
    original_line: int = 0
    original_column: int = 0
    name: Optional[int] = None


class OriginalPosition(NamedTuple):
    source: str
    line: int
    column: int
    name: Optional[str] = None


class GeneratedPosition(NamedTuple):
    line: int
    column: int


def decode_vlq(segment: str) -> list[int]:
    """Decode one comma-free chunk of Base64 VLQ values."""
    values = []
    shift = 0
    value = 0
    for ch in segment:
        try:
            digit = _BASE64_VALUES[ch]
        except KeyError:
            raise ValueError(f"Invalid base64 VLQ character: {ch!r}") from None
        value += (digit & 31) << shift
        if digit & 32:
            shift += 5
            continue
        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        value = 0
        shift = 0
    if shift:
        raise ValueError(f"Truncated base64 VLQ segment: {segment!r}")
    return values


def decode_mappings(mappings: str) -> list[list[Segment]]:
    """Decode the ``mappings`` field into per-line segment lists, 0-based."""
    lines: list[list[Segment]] = []
    source = original_line = original_column = name = 0

    for line_str in mappings.split(";"):
        generated_column = 0
        line: list[Segment] = []
        for chunk in line_str.split(","):
            if not chunk:
                continue
            fields = decode_vlq(chunk)
            generated_column += fields[0]
            if len(fields) == 1:
                line.append(Segment(generated_column))
                continue
            if len(fields) < 4:
                raise ValueError(f"Malformed mapping segment: {chunk!r}")
            source += fields[1]
            original_line += fields[2]
            original_column += fields[3]
            if len(fields) >= 5:
                name += fields[4]
                line.append(Segment(generated_column, source, original_line, original_column, name))
            else:
                line.append(Segment(generated_column, source, original_line, original_column))
        line.sort(key=lambda s: s.generated_column)
        lines.append(line)
    return lines


class SourceMap:
    def __init__(
        self,
        sources: list[str],
        mappings: str,
        names: Optional[list[str]] = None,
        sources_content: Optional[list[Optional[str]]] = None,
        file: Optional[str] = None,
    ):
        self.sources = list(sources)
        self.names = list(names or [])
        self.sources_content = list(sources_content or [])
        self.file = file
        self._lines = decode_mappings(mappings)
        self._by_source: Optional[dict[int, dict[int, list[tuple[int, int, int]]]]] = None

    @classmethod
    def from_json(cls, data: dict) -> "SourceMap":
        if not isinstance(data, dict):
            raise ValueError("Source map must be a JSON object")
        if "sections" in data:
            raise ValueError("Indexed source maps are not supported")
        if data.get("version") != 3:
            raise ValueError(f"Unsupported source map version: {data.get('version')!r}")
        if not isinstance(data.get("mappings"), str):
            raise ValueError("Source map has no mappings")
        return cls(
            sources=[s or "" for s in data.get("sources", [])],
            mappings=data["mappings"],
            names=data.get("names"),
            sources_content=data.get("sourcesContent"),
            file=data.get("file"),
        )

    def source_content(self, index: int) -> Optional[str]:
        if 0 <= index < len(self.sources_content):
            return self.sources_content[index]
        return None

    def original_position_for(
        self, line: int, column: int, bias: int = GREATEST_LOWER_BOUND,
    ) -> Optional[OriginalPosition]:
        """Find the original position of a generated one, or None if unmapped."""
        if line < 1 or line > len(self._lines):
            return None
        segments = self._lines[line - 1]
        if not segments:
            return None

        columns = [s.generated_column for s in segments]
        if bias == GREATEST_LOWER_BOUND:
            idx = bisect_right(columns, column) - 1
            if idx < 0:
                return None
        else:
            idx = bisect_left(columns, column)
            if idx >= len(segments):
                return None

        seg = segments[idx]
        if seg.source is None or seg.source >= len(self.sources):
            return None
        name = self.names[seg.name] if seg.name is not None and seg.name < len(self.names) else None
        return OriginalPosition(
            self.sources[seg.source], seg.original_line + 1, seg.original_column, name,
        )

    def generated_position_for(
        self, source: str, line: int, column: int, bias: int = LEAST_UPPER_BOUND,
    ) -> Optional[GeneratedPosition]:
        """Find the generated position of an original one, or None if unmapped."""
        try:
            source_index = self.sources.index(source)
        except ValueError:
            return None

        entries = self._reverse_index().get(source_index, {}).get(line - 1)
        if not entries:
            return None

        columns = [e[0] for e in entries]
        if bias == GREATEST_LOWER_BOUND:
            idx = bisect_right(columns, column) - 1
            if idx < 0:
                return None
        else:
            idx = bisect_left(columns, column)
            if idx >= len(entries):
                return None

        _, generated_line, generated_column = entries[idx]
        return GeneratedPosition(generated_line + 1, generated_column)

    def _reverse_index(self) -> dict[int, dict[int, list[tuple[int, int, int]]]]:
        if self._by_source is None:
            by_source: dict[int, dict[int, list[tuple[int, int, int]]]] = {}
            for generated_line, segments in enumerate(self._lines):
                for seg in segments:
                    if seg.source is None:
                        continue
                    by_source.setdefault(seg.source, {}).setdefault(seg.original_line, []).append(
                        (seg.original_column, generated_line, seg.generated_column)
                    )
            for lines in by_source.values():
                for entries in lines.values():
                    entries.sort()
            self._by_source = by_source
        return self._by_source
