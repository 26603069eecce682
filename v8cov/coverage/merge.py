"""Merging of raw V8 coverage reports.

Scripts are matched by URL and functions by their root range. The ranges
of matched functions are flattened into disjoint count segments, summed,
and re-nested under the root range, which keeps the result valid block
coverage and makes the merge commutative and associative.
"""

from __future__ import annotations

from v8cov.models.coverage import (
    CoverageRange,
    FunctionCoverage,
    ProcessCoverage,
    ScriptCoverage,
)


def _peek_last(stack):
    """Returns the top element of stack or None"""
    return stack[-1] if stack else None


def to_disjoint_segments(ranges: list[CoverageRange]) -> list[tuple[int, int, int]]:
    """Flatten nested ranges into ``(start, end, count)`` segments.

    The innermost range covering an offset decides its count.
    """
    stack: list[CoverageRange] = []
    segments: list[list[int]] = []

    def _append(start: int, end: int, count: int) -> None:
        if end <= start:
            return
        last = _peek_last(segments)
        if last is not None and last[2] == count and last[1] == start:
            last[1] = end
            return
        segments.append([start, end, count])

    cursor = None
    # Parents ahead of children that share a start offset
    for entry in sorted(ranges, key=lambda r: (r.start_offset, -r.end_offset)):
        top = _peek_last(stack)
        while top is not None and top.end_offset <= entry.start_offset:
            _append(cursor, top.end_offset, top.count)
            cursor = max(cursor, top.end_offset)
            stack.pop()
            top = _peek_last(stack)

        if top is not None:
            _append(cursor, entry.start_offset, top.count)
        cursor = entry.start_offset
        stack.append(entry)

    while stack:
        top = stack.pop()
        _append(cursor, top.end_offset, top.count)
        cursor = max(cursor, top.end_offset)

    return [tuple(s) for s in segments]


def merge_segments(
    segments_a: list[tuple[int, int, int]],
    segments_b: list[tuple[int, int, int]],
) -> list[tuple[int, int, int]]:
    """Sum two disjoint segment lists; overlapping parts add their counts."""
    bounds = sorted({p for s in segments_a + segments_b for p in (s[0], s[1])})
    merged: list[list[int]] = []
    i = j = 0
    for start, end in zip(bounds, bounds[1:]):
        while i < len(segments_a) and segments_a[i][1] <= start:
            i += 1
        while j < len(segments_b) and segments_b[j][1] <= start:
            j += 1

        count = 0
        covered = False
        if i < len(segments_a) and segments_a[i][0] <= start:
            count += segments_a[i][2]
            covered = True
        if j < len(segments_b) and segments_b[j][0] <= start:
            count += segments_b[j][2]
            covered = True
        if not covered:
            continue

        last = _peek_last(merged)
        if last is not None and last[1] == start and last[2] == count:
            last[1] = end
        else:
            merged.append([start, end, count])
    return [tuple(s) for s in merged]


def _root_key(fn: FunctionCoverage) -> tuple[int, int]:
    if not fn.ranges:
        return (0, 0)
    root = fn.ranges[0]
    return (root.start_offset, root.end_offset)


def _merge_functions(functions: list[FunctionCoverage]) -> FunctionCoverage:
    if len(functions) == 1:
        return functions[0].model_copy(deep=True)

    segments: list[tuple[int, int, int]] = []
    for fn in functions:
        segments = merge_segments(segments, to_disjoint_segments(fn.ranges))

    root_start, root_end = _root_key(functions[0])
    root_count = sum(fn.ranges[0].count for fn in functions if fn.ranges)
    ranges = [CoverageRange(start_offset=root_start, end_offset=root_end, count=root_count)]
    for start, end, count in segments:
        if count != root_count:
            ranges.append(CoverageRange(start_offset=start, end_offset=end, count=count))

    names = sorted({fn.function_name for fn in functions})
    return FunctionCoverage(
        function_name=names[-1] if names else "",
        ranges=ranges,
        is_block_coverage=any(fn.is_block_coverage for fn in functions),
    )


def _merge_scripts(scripts: list[ScriptCoverage]) -> ScriptCoverage:
    by_root: dict[tuple[int, int], list[FunctionCoverage]] = {}
    for script in scripts:
        for fn in script.functions:
            by_root.setdefault(_root_key(fn), []).append(fn)

    # Outer functions ahead of inner ones sharing a start offset
    order = sorted(by_root, key=lambda k: (k[0], -k[1]))
    functions = [_merge_functions(by_root[key]) for key in order]
    script_ids = sorted(s.script_id for s in scripts)
    return ScriptCoverage(script_id=script_ids[0], url=scripts[0].url, functions=functions)


def merge_process_coverages(reports: list[ProcessCoverage]) -> ProcessCoverage:
    """Union several coverage snapshots into one."""
    by_url: dict[str, list[ScriptCoverage]] = {}
    for report in reports:
        for script in report.result:
            by_url.setdefault(script.url, []).append(script)

    return ProcessCoverage(result=[_merge_scripts(by_url[url]) for url in sorted(by_url)])
