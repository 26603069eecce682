"""Coverage data structures: raw V8 reports and Istanbul-style file coverage."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _V8Model(BaseModel):
    # Keep the engine's camelCase keys on disk, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Raw engine coverage (Profiler.takePreciseCoverage)
# ---------------------------------------------------------------------------


class CoverageRange(_V8Model):
    start_offset: int = Field(alias="startOffset")
    end_offset: int = Field(alias="endOffset")
    count: int = 0


class FunctionCoverage(_V8Model):
    function_name: str = Field(default="", alias="functionName")
    ranges: list[CoverageRange] = Field(default_factory=list)
    is_block_coverage: bool = Field(default=False, alias="isBlockCoverage")


class ScriptCoverage(_V8Model):
    script_id: str = Field(default="0", alias="scriptId")
    url: str
    functions: list[FunctionCoverage] = Field(default_factory=list)


class ProcessCoverage(_V8Model):
    result: list[ScriptCoverage] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Canonical (Istanbul) coverage
# ---------------------------------------------------------------------------


class Position(BaseModel):
    line: int
    column: int


class Location(BaseModel):
    start: Position
    end: Position

    @classmethod
    def span(cls, start_line: int, start_col: int, end_line: int, end_col: int) -> "Location":
        return cls(
            start=Position(line=start_line, column=start_col),
            end=Position(line=end_line, column=end_col),
        )

    def key(self) -> str:
        return f"{self.start.line}|{self.start.column}|{self.end.line}|{self.end.column}"


class FunctionMapping(BaseModel):
    name: str
    decl: Location
    loc: Location
    line: int


class BranchMapping(BaseModel):
    loc: Location
    type: str = "branch"
    locations: list[Location] = Field(default_factory=list)
    line: int


def _merge_items(a_hits: dict, a_map: dict, b_hits: dict, b_map: dict, item_key, add):
    """Match items by location key, sum hits of matches, renumber densely."""
    merged: dict[str, list] = {}
    for hits, mapping in ((a_hits, a_map), (b_hits, b_map)):
        for idx, item_hits in hits.items():
            item = mapping.get(idx)
            if item is None:
                continue
            key = item_key(item)
            if key in merged:
                merged[key][0] = add(merged[key][0], item_hits)
            else:
                merged[key] = [item_hits, item]

    out_hits: dict[str, object] = {}
    out_map: dict[str, object] = {}
    for i, (item_hits, item) in enumerate(merged.values()):
        out_hits[str(i)] = item_hits
        out_map[str(i)] = item
    return out_hits, out_map


def _add_branch_hits(a: list[int], b: list[int]) -> list[int]:
    size = max(len(a), len(b))
    return [
        (a[i] if i < len(a) else 0) + (b[i] if i < len(b) else 0)
        for i in range(size)
    ]


class FileCoverage(BaseModel):
    """Coverage of one original source file, in the Istanbul JSON layout."""
    model_config = ConfigDict(populate_by_name=True)

    path: str
    statement_map: dict[str, Location] = Field(default_factory=dict, alias="statementMap")
    fn_map: dict[str, FunctionMapping] = Field(default_factory=dict, alias="fnMap")
    branch_map: dict[str, BranchMapping] = Field(default_factory=dict, alias="branchMap")
    s: dict[str, int] = Field(default_factory=dict)
    f: dict[str, int] = Field(default_factory=dict)
    b: dict[str, list[int]] = Field(default_factory=dict)

    def merge(self, other: "FileCoverage") -> None:
        """Add another coverage record of the same file into this one."""
        self.s, self.statement_map = _merge_items(
            self.s, self.statement_map, other.s, other.statement_map,
            lambda loc: loc.key(), lambda x, y: x + y,
        )
        self.f, self.fn_map = _merge_items(
            self.f, self.fn_map, other.f, other.fn_map,
            lambda fn: fn.decl.key(), lambda x, y: x + y,
        )
        self.b, self.branch_map = _merge_items(
            self.b, self.branch_map, other.b, other.branch_map,
            lambda br: br.loc.key() + "".join(f"|{loc.key()}" for loc in br.locations),
            _add_branch_hits,
        )

    def line_coverage(self) -> dict[int, int]:
        """Map each line to the highest hit count among statements starting on it."""
        lines: dict[int, int] = {}
        for idx, count in self.s.items():
            loc = self.statement_map.get(idx)
            if loc is None:
                continue
            line = loc.start.line
            if line not in lines or lines[line] < count:
                lines[line] = count
        return lines

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class CoverageMap:
    """Absolute source path -> FileCoverage."""

    def __init__(self, data: Optional[dict] = None):
        self._files: dict[str, FileCoverage] = {}
        if data:
            self.merge(data)

    def merge(self, other: "CoverageMap | dict | FileCoverage") -> None:
        if isinstance(other, FileCoverage):
            items = [other]
        elif isinstance(other, CoverageMap):
            items = list(other._files.values())
        else:
            items = [
                fc if isinstance(fc, FileCoverage) else FileCoverage.model_validate({"path": path, **fc})
                for path, fc in other.items()
            ]

        for fc in items:
            existing = self._files.get(fc.path)
            if existing is None:
                self._files[fc.path] = fc.model_copy(deep=True)
            else:
                existing.merge(fc)

    def files(self) -> list[str]:
        return list(self._files)

    def file_coverage_for(self, path: str) -> FileCoverage:
        if path not in self._files:
            raise KeyError(f"No coverage for file: {path}")
        return self._files[path]

    def __contains__(self, path: str) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def to_json(self) -> dict:
        return {path: fc.to_json() for path, fc in self._files.items()}

    @classmethod
    def from_json(cls, data: dict) -> "CoverageMap":
        return cls(data)
