"""Coverage converter — turns V8 function/range coverage into Istanbul file coverage.

Every source line is a statement. Lines start out covered and are set to
the count of each range that spans them completely, in report order, so
inner ranges (nested blocks and functions) refine the outer ones. Block
ranges also become branches, and the first range of a named function
becomes that function's entry.

Offsets and columns are UTF-16 code units, the unit V8 and source maps use.
"""

from __future__ import annotations

import logging
import re
import sys
from bisect import bisect_left, bisect_right
from pathlib import Path
from typing import Callable, NamedTuple, Optional

from v8cov.coverage.sources import SourceBundle
from v8cov.models.coverage import (
    BranchMapping,
    CoverageRange,
    FileCoverage,
    FunctionCoverage,
    FunctionMapping,
    Location,
)
from v8cov.sourcemap import (
    GREATEST_LOWER_BOUND,
    LEAST_UPPER_BOUND,
    OriginalPosition,
    SourceMap,
)

logger = logging.getLogger(__name__)

# Function name of a synthesized whole-file record with no known structure
EMPTY_REPORT = "(empty-report)"

END_OF_LINE = sys.maxsize

_IGNORE_NEXT_COUNT = re.compile(r"^\W*/\* (?:[cv]8|node:coverage) ignore next (\d+)")
_IGNORE_NEXT_OWN_LINE = re.compile(r"^\W*/\* (?:[cv]8|node:coverage) ignore next")
_IGNORE_NEXT_INLINE = re.compile(r"/\* (?:[cv]8|node:coverage) ignore next")
_IGNORE_START_STOP = re.compile(r"/\* [cv]8 ignore (start|stop)")


def utf16_len(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def is_vendor_path(path: str) -> bool:
    return "/node_modules/" in path.replace("\\", "/")


class SourceLine:
    __slots__ = ("line", "start_col", "end_col", "count", "ignore")

    def __init__(self, line: int, start_col: int, end_col: int):
        self.line = line
        self.start_col = start_col
        self.end_col = end_col
        self.count = 1
        self.ignore = False

    def location(self) -> Location:
        return Location.span(self.line, 0, self.line, self.end_col - self.start_col)


class MappedRange(NamedTuple):
    source: str
    start_line: int
    start_column: int
    end_line: int
    end_column: int


def _original_position_try_both(source_map: SourceMap, line: int, column: int):
    pos = source_map.original_position_for(line, column, GREATEST_LOWER_BOUND)
    if pos is None:
        pos = source_map.original_position_for(line, column, LEAST_UPPER_BOUND)
    return pos


def _original_end_position_for(source_map: SourceMap, line: int, column: int):
    # The mapping overlapping the character before the end gives the start
    # of the original range; the next generated mapping after it gives the end.
    before_end = _original_position_try_both(source_map, line, max(column - 1, 1))
    if before_end is None:
        return None

    after_end = source_map.generated_position_for(
        before_end.source, before_end.line, before_end.column + 1, LEAST_UPPER_BOUND,
    )
    if after_end is not None:
        end = source_map.original_position_for(after_end.line, after_end.column)
        if end is not None and end.line == before_end.line:
            return end

    # Nothing else mapped on that original line: the range runs to its end
    return OriginalPosition(before_end.source, before_end.line, END_OF_LINE, before_end.name)


class CovSource:
    """Line table of one source text."""

    def __init__(self, text: str):
        self.lines: list[SourceLine] = []
        self.eof = utf16_len(text)
        self._build_lines(text)
        self._end_cols = [line.end_col for line in self.lines]
        self._start_cols = [line.start_col for line in self.lines]

    def _build_lines(self, text: str) -> None:
        parts = text.split("\n")
        position = 0
        ignore_count = 0
        ignore_all = False
        for i, part in enumerate(parts):
            has_newline = i < len(parts) - 1
            if not has_newline and part == "" and i > 0:
                break
            content = part[:-1] if has_newline and part.endswith("\r") else part

            line = SourceLine(i + 1, position, position + utf16_len(content))
            if ignore_count > 0:
                line.ignore = True
                ignore_count -= 1
            elif ignore_all:
                line.ignore = True
            self.lines.append(line)
            position += utf16_len(part) + (1 if has_newline else 0)

            hint = self._parse_ignore(part)
            if hint is None:
                continue
            line.ignore = True
            kind, count = hint
            if kind == "next":
                ignore_count = count
            else:
                ignore_all = kind == "start"
                ignore_count = 0

    @staticmethod
    def _parse_ignore(line_str: str) -> Optional[tuple[str, int]]:
        match = _IGNORE_NEXT_COUNT.match(line_str)
        if match:
            return ("next", int(match.group(1)))
        if _IGNORE_NEXT_OWN_LINE.match(line_str):
            return ("next", 1)
        if _IGNORE_NEXT_INLINE.search(line_str):
            # Only the current line
            return ("next", 0)
        match = _IGNORE_START_STOP.search(line_str)
        if match:
            return (match.group(1), 0)
        return None

    def lines_overlapping(self, start: int, end: int) -> list[SourceLine]:
        first = bisect_left(self._end_cols, start)
        last = bisect_right(self._start_cols, end)
        return self.lines[first:last]

    def relative_to_offset(self, line: int, relative_column: int) -> int:
        line = max(line, 1)
        if line > len(self.lines):
            return self.eof
        source_line = self.lines[line - 1]
        return min(source_line.start_col + relative_column, source_line.end_col)

    def offset_to_original_relative(
        self, source_map: SourceMap, start: int, end: int,
    ) -> Optional[MappedRange]:
        lines = self.lines_overlapping(start, end)
        if not lines:
            return None
        first, last = lines[0], lines[-1]

        start_pos = _original_position_try_both(
            source_map, first.line, max(0, start - first.start_col),
        )
        if start_pos is None:
            return None

        end_pos = _original_end_position_for(source_map, last.line, end - last.start_col)
        if end_pos is None:
            return None

        if start_pos.source != end_pos.source:
            return None

        end_line, end_column = end_pos.line, end_pos.column
        if start_pos.line == end_line and start_pos.column == end_column:
            upper = source_map.original_position_for(
                last.line, end - last.start_col, LEAST_UPPER_BOUND,
            )
            if upper is None or upper.source != start_pos.source:
                return None
            end_line, end_column = upper.line, upper.column - 1

        return MappedRange(start_pos.source, start_pos.line, start_pos.column, end_line, end_column)


class V8ToIstanbul:
    """Converts the coverage of one built file into per-source Istanbul records."""

    def __init__(
        self,
        path: str,
        sources: SourceBundle,
        exclude_path: Callable[[str], bool] = is_vendor_path,
    ):
        self.path = path
        self.sources = sources
        self.exclude_path = exclude_path
        self.generated: Optional[CovSource] = None
        self.cov_sources: dict[str, CovSource] = {}
        self._branches: dict[str, list[tuple[Location, int]]] = {}
        self._functions: dict[str, list[tuple[str, Location, int]]] = {}

    def load(self) -> None:
        source_map = self.sources.source_map
        source = self.sources.source
        if not source and not self.sources.original_source:
            source = Path(self.path).read_text(encoding="utf-8")
        self.generated = CovSource(source or self.sources.original_source)

        if source_map is None:
            self.cov_sources[self.path] = CovSource(self.sources.original_source or source)
            return

        for index, original_path in enumerate(source_map.sources):
            if self.exclude_path(original_path) or original_path in self.cov_sources:
                continue
            content = source_map.source_content(index)
            if content is None:
                try:
                    content = Path(original_path).read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    logger.debug("Original source %s unavailable: %s", original_path, e)
                    continue
            self.cov_sources[original_path] = CovSource(content)

    def _remap(self, rng: CoverageRange) -> Optional[tuple[str, CovSource, int, int]]:
        start = max(0, rng.start_offset)
        end = min(self.generated.eof, rng.end_offset)
        source_map = self.sources.source_map
        if source_map is None:
            return self.path, self.cov_sources[self.path], start, end

        mapped = self.generated.offset_to_original_relative(source_map, start, end)
        if mapped is None:
            return None
        cov_source = self.cov_sources.get(mapped.source)
        if cov_source is None:
            return None
        return (
            mapped.source,
            cov_source,
            cov_source.relative_to_offset(mapped.start_line, mapped.start_column),
            cov_source.relative_to_offset(mapped.end_line, mapped.end_column),
        )

    def _apply_empty_report(self) -> None:
        for cov_source in self.cov_sources.values():
            for line in cov_source.lines:
                line.count = 0

    def apply_coverage(self, functions: list[FunctionCoverage]) -> None:
        for block in functions:
            if block.function_name == EMPTY_REPORT:
                self._apply_empty_report()
                continue

            for i, rng in enumerate(block.ranges):
                remapped = self._remap(rng)
                if remapped is None:
                    continue
                path, cov_source, start, end = remapped
                lines = cov_source.lines_overlapping(start, end)
                if not lines:
                    continue

                first, last = lines[0], lines[-1]
                loc = Location.span(
                    first.line, start - first.start_col, last.line, end - last.start_col,
                )
                if block.is_block_coverage:
                    self._branches.setdefault(path, []).append((loc, rng.count))
                    if block.function_name and i == 0:
                        self._functions.setdefault(path, []).append(
                            (block.function_name, loc, rng.count)
                        )
                elif block.function_name:
                    self._functions.setdefault(path, []).append(
                        (block.function_name, loc, rng.count)
                    )

                for line in lines:
                    # A range that only clips a line (`x ? a : b`) leaves it alone
                    if start <= line.start_col and end >= line.end_col and not line.ignore:
                        line.count = rng.count

    def to_istanbul(self) -> dict[str, FileCoverage]:
        result = {}
        for path, cov_source in self.cov_sources.items():
            fc = FileCoverage(path=path)
            for idx, line in enumerate(cov_source.lines):
                fc.statement_map[str(idx)] = line.location()
                fc.s[str(idx)] = 1 if line.ignore else line.count

            # Ignored (or out of range) start lines report as covered
            def ignored(loc: Location) -> bool:
                if not 0 < loc.start.line <= len(cov_source.lines):
                    return True
                return cov_source.lines[loc.start.line - 1].ignore

            for idx, (loc, count) in enumerate(self._branches.get(path, [])):
                fc.branch_map[str(idx)] = BranchMapping(
                    loc=loc, type="branch", locations=[loc], line=loc.start.line,
                )
                fc.b[str(idx)] = [1 if ignored(loc) else count]

            for idx, (name, loc, count) in enumerate(self._functions.get(path, [])):
                fc.fn_map[str(idx)] = FunctionMapping(name=name, decl=loc, loc=loc, line=loc.start.line)
                fc.f[str(idx)] = 1 if ignored(loc) else count

            result[path] = fc
        return result


def convert_coverage(
    file_path: str,
    functions: list[FunctionCoverage],
    sources: SourceBundle,
) -> Optional[dict[str, FileCoverage]]:
    """Convert one file's V8 coverage, or return None if it cannot be converted."""
    logger.debug("Converting coverage for: %s", file_path)
    try:
        converter = V8ToIstanbul(file_path, sources)
        converter.load()
        converter.apply_coverage(functions)
        return converter.to_istanbul()
    except Exception as e:
        logger.error(
            "Error while converting the following file into Istanbul coverage format: %s: %s",
            file_path, e,
        )
        logger.debug("Conversion failure details", exc_info=True)
        return None
