"""Tests for raw V8 coverage merging."""

from v8cov.coverage.merge import merge_process_coverages, merge_segments, to_disjoint_segments
from v8cov.models.coverage import CoverageRange, ProcessCoverage

from tests.conftest import SCRIPT_URL, report, script


def _ranges(*triples):
    return [CoverageRange(start_offset=s, end_offset=e, count=c) for s, e, c in triples]


def _triples(fn):
    return [(r.start_offset, r.end_offset, r.count) for r in fn.ranges]


class TestDisjointSegments:
    def test_single_range(self):
        assert to_disjoint_segments(_ranges((0, 10, 1))) == [(0, 10, 1)]

    def test_nested_range_splits_parent(self):
        segments = to_disjoint_segments(_ranges((0, 100, 1), (10, 20, 0)))
        assert segments == [(0, 10, 1), (10, 20, 0), (20, 100, 1)]

    def test_deeply_nested(self):
        segments = to_disjoint_segments(_ranges((0, 100, 2), (10, 50, 1), (20, 30, 0)))
        assert segments == [(0, 10, 2), (10, 20, 1), (20, 30, 0), (30, 50, 1), (50, 100, 2)]

    def test_child_sharing_parent_start(self):
        segments = to_disjoint_segments(_ranges((0, 10, 0), (0, 100, 3)))
        assert segments == [(0, 10, 0), (10, 100, 3)]

    def test_equal_counts_coalesce(self):
        segments = to_disjoint_segments(_ranges((0, 100, 1), (10, 20, 1)))
        assert segments == [(0, 100, 1)]


class TestMergeSegments:
    def test_overlap_adds(self):
        merged = merge_segments([(0, 10, 1)], [(5, 15, 2)])
        assert merged == [(0, 5, 1), (5, 10, 3), (10, 15, 2)]

    def test_gap_is_not_filled(self):
        merged = merge_segments([(0, 5, 1)], [(10, 15, 1)])
        assert merged == [(0, 5, 1), (10, 15, 1)]

    def test_empty(self):
        assert merge_segments([], [(0, 5, 1)]) == [(0, 5, 1)]


class TestMergeProcessCoverages:
    def test_same_function_counts_add(self):
        a = report(script(SCRIPT_URL, [(0, 100, 1), (10, 20, 0)], name="App"))
        b = report(script(SCRIPT_URL, [(0, 100, 1), (10, 20, 1)], name="App"))

        merged = merge_process_coverages([a, b])
        assert len(merged.result) == 1
        (fn,) = merged.result[0].functions
        assert fn.function_name == "App"
        assert _triples(fn) == [(0, 100, 2), (10, 20, 1)]

    def test_distinct_scripts_are_kept(self):
        other = SCRIPT_URL.replace("index", "chunk")
        merged = merge_process_coverages([
            report(script(SCRIPT_URL, [(0, 10, 1)])),
            report(script(other, [(0, 20, 1)])),
        ])
        assert sorted(s.url for s in merged.result) == sorted([SCRIPT_URL, other])

    def test_distinct_functions_are_kept(self):
        merged = merge_process_coverages([
            report(script(SCRIPT_URL, [(0, 10, 1)], name="a")),
            report(script(SCRIPT_URL, [(20, 30, 0)], name="b")),
        ])
        names = [fn.function_name for fn in merged.result[0].functions]
        assert names == ["a", "b"]

    def test_empty_inputs(self):
        assert merge_process_coverages([]).result == []
        assert merge_process_coverages([ProcessCoverage()]).result == []

    def test_merge_with_empty_is_identity(self):
        a = report(script(SCRIPT_URL, [(0, 100, 4), (10, 20, 0)], name="App"))
        merged = merge_process_coverages([ProcessCoverage(), a])
        assert merged.to_json() == merge_process_coverages([a]).to_json()

    def test_commutative(self):
        a = report(script(SCRIPT_URL, [(0, 100, 1), (10, 20, 0)], name="App"))
        b = report(script(SCRIPT_URL, [(0, 100, 2), (30, 40, 0)], name="App"))
        assert merge_process_coverages([a, b]).to_json() == merge_process_coverages([b, a]).to_json()

    def test_associative(self):
        a = report(script(SCRIPT_URL, [(0, 100, 1), (10, 20, 0)]))
        b = report(script(SCRIPT_URL, [(0, 100, 1), (15, 40, 3)]))
        c = report(script(SCRIPT_URL, [(0, 100, 1)]))

        left = merge_process_coverages([merge_process_coverages([a, b]), c])
        right = merge_process_coverages([a, merge_process_coverages([b, c])])
        assert left.to_json() == right.to_json()

    def test_preserves_uncovered_blocks(self):
        a = report(script(SCRIPT_URL, [(0, 100, 1), (10, 20, 0)]))
        b = report(script(SCRIPT_URL, [(0, 100, 1), (10, 20, 0)]))
        (fn,) = merge_process_coverages([a, b]).result[0].functions
        assert (10, 20, 0) in _triples(fn)

    def test_outer_function_precedes_inner_at_same_start(self):
        coverage = report(script(SCRIPT_URL, [(0, 47, 1)]))
        coverage.result[0].functions.append(
            script(SCRIPT_URL, [(0, 30, 0)], name="foo").functions[0]
        )
        merged = merge_process_coverages([coverage, report(script(SCRIPT_URL, [(0, 47, 1)]))])

        functions = merged.result[0].functions
        assert [fn.function_name for fn in functions] == ["", "foo"]
        assert _triples(functions[0]) == [(0, 47, 2)]
        assert _triples(functions[1]) == [(0, 30, 0)]
