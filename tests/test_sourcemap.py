"""Tests for source map decoding, lookups and source resolution."""

import json

import pytest

from v8cov.coverage.sources import load_source_map, resolve_sources
from v8cov.sourcemap import (
    GREATEST_LOWER_BOUND,
    LEAST_UPPER_BOUND,
    SourceMap,
    decode_mappings,
    decode_vlq,
)

from tests.conftest import BUILT_JS, BUILT_MAPPINGS


class TestDecodeVlq:
    @pytest.mark.parametrize("chunk,values", [
        ("A", [0]),
        ("C", [1]),
        ("D", [-1]),
        ("e", [15]),
        ("gB", [16]),
        ("AAAA", [0, 0, 0, 0]),
        ("cACF", [14, 0, 1, -2]),
    ])
    def test_values(self, chunk, values):
        assert decode_vlq(chunk) == values

    def test_invalid_character(self):
        with pytest.raises(ValueError):
            decode_vlq("A!")

    def test_truncated(self):
        with pytest.raises(ValueError):
            decode_vlq("g")


class TestDecodeMappings:
    def test_relative_fields_accumulate(self):
        lines = decode_mappings(BUILT_MAPPINGS)
        assert len(lines) == 1
        columns = [s.generated_column for s in lines[0]]
        assert columns == [0, 15, 29, 30, 35, 36]
        originals = [(s.original_line, s.original_column) for s in lines[0]]
        assert originals == [(0, 0), (1, 2), (2, 0), (3, 0), (3, 5), (3, 6)]

    def test_empty_lines(self):
        lines = decode_mappings(";;AAAA")
        assert lines[0] == [] and lines[1] == []
        assert lines[2][0].generated_column == 0

    def test_generated_only_segment(self):
        (line,) = decode_mappings("A")
        assert line[0].source is None


class TestSourceMap:
    def setup_method(self):
        self.map = SourceMap(sources=["/src/App.tsx"], mappings=BUILT_MAPPINGS)

    def test_original_position_glb(self):
        pos = self.map.original_position_for(1, 20)
        assert (pos.source, pos.line, pos.column) == ("/src/App.tsx", 2, 2)

    def test_original_position_lub(self):
        pos = self.map.original_position_for(1, 20, LEAST_UPPER_BOUND)
        assert (pos.line, pos.column) == (3, 0)

    def test_original_position_out_of_range(self):
        assert self.map.original_position_for(2, 0) is None
        assert self.map.original_position_for(1, 99, LEAST_UPPER_BOUND) is None

    def test_generated_position(self):
        pos = self.map.generated_position_for("/src/App.tsx", 4, 1)
        assert (pos.line, pos.column) == (1, 35)

    def test_generated_position_glb(self):
        pos = self.map.generated_position_for("/src/App.tsx", 4, 1, GREATEST_LOWER_BOUND)
        assert (pos.line, pos.column) == (1, 30)

    def test_generated_position_unknown_source(self):
        assert self.map.generated_position_for("/src/Other.tsx", 1, 0) is None

    def test_from_json_validation(self):
        with pytest.raises(ValueError):
            SourceMap.from_json({"version": 2, "sources": [], "mappings": ""})
        with pytest.raises(ValueError):
            SourceMap.from_json({"version": 3, "sections": []})
        with pytest.raises(ValueError):
            SourceMap.from_json({"version": 3, "sources": []})

    def test_source_content(self):
        source_map = SourceMap.from_json({
            "version": 3, "sources": ["a.ts"], "sourcesContent": ["let a = 1;"], "mappings": "AAAA",
        })
        assert source_map.source_content(0) == "let a = 1;"
        assert source_map.source_content(1) is None


class TestSourceResolution:
    def test_sources_resolved_against_map_directory(self, project_dir):
        source_map = load_source_map(project_dir / "dist" / "assets" / "index.js.map")
        assert source_map.sources == [str((project_dir / "src" / "App.tsx").resolve())]

    def test_source_root(self, tmp_path):
        map_path = tmp_path / "out.js.map"
        map_path.write_text(json.dumps({
            "version": 3, "sourceRoot": "../app/", "sources": ["main.ts"], "mappings": "AAAA",
        }))
        source_map = load_source_map(map_path)
        assert source_map.sources == [str((tmp_path.parent / "app" / "main.ts").resolve())]

    def test_resolve_with_map(self, project_dir):
        bundle = resolve_sources(project_dir / "dist" / "assets" / "index.js")
        assert bundle.source == BUILT_JS
        assert bundle.original_source == BUILT_JS
        assert bundle.source_map is not None

    def test_resolve_without_map(self, tmp_path, caplog):
        built = tmp_path / "plain.js"
        built.write_text("var a = 1;\n")
        bundle = resolve_sources(built)
        assert bundle.source == "var a = 1;\n"
        assert bundle.source_map is None
        assert "No source map" in caplog.text

    def test_resolve_with_broken_map(self, tmp_path, caplog):
        built = tmp_path / "plain.js"
        built.write_text("var a = 1;\n")
        (tmp_path / "plain.js.map").write_text("{not json")
        bundle = resolve_sources(built)
        assert bundle is not None
        assert bundle.source_map is None
        assert "Error reading map file" in caplog.text

    def test_resolve_missing_built_file(self, tmp_path):
        assert resolve_sources(tmp_path / "missing.js") is None

    def test_resolve_undecodable_built_file(self, tmp_path, caplog):
        built = tmp_path / "legacy.js"
        built.write_bytes(b"\xff\xfevar a;\n")
        assert resolve_sources(built) is None
        assert "Could not read built file" in caplog.text
