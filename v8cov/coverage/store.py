"""Coverage store — per-spec raw and canonical coverage artifacts."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from v8cov.coverage.merge import merge_process_coverages
from v8cov.models.coverage import CoverageMap, ProcessCoverage

logger = logging.getLogger(__name__)

RAW_SUFFIX = "_v8.json"


class CoverageStore(ABC):
    """Two tables keyed by spec name: accumulated raw V8 coverage and canonical coverage."""

    @abstractmethod
    def has_raw(self, spec: str) -> bool: ...

    @abstractmethod
    def load_raw(self, spec: str) -> ProcessCoverage: ...

    @abstractmethod
    def save_raw(self, spec: str, coverage: ProcessCoverage) -> None: ...

    @abstractmethod
    def delete_raw(self, spec: str) -> None: ...

    @abstractmethod
    def load_canonical(self, spec: str) -> CoverageMap: ...

    @abstractmethod
    def save_canonical(self, spec: str, coverage_map: CoverageMap) -> None: ...

    @abstractmethod
    def delete_canonical(self, spec: str) -> None: ...

    def merge_and_save_raw(self, spec: str, coverage: ProcessCoverage) -> ProcessCoverage:
        """Union new raw coverage into what the spec has accumulated so far."""
        merged = merge_process_coverages([self.load_raw(spec), coverage])
        self.save_raw(spec, merged)
        return merged

    def merge_and_save_canonical(self, spec: str, increment: CoverageMap) -> CoverageMap:
        """Add a converted increment to the spec's canonical coverage."""
        coverage_map = self.load_canonical(spec)
        coverage_map.merge(increment)
        self.save_canonical(spec, coverage_map)
        return coverage_map

    def purge(self, spec: str) -> None:
        self.delete_raw(spec)
        self.delete_canonical(spec)


class DiskCoverageStore(CoverageStore):
    """Stores artifacts as ``{spec}_v8.json`` and ``{spec}.json`` in one directory."""

    def __init__(self, coverage_dir: str | Path):
        self.coverage_dir = Path(coverage_dir)

    def raw_path(self, spec: str) -> Path:
        return self.coverage_dir / f"{spec}{RAW_SUFFIX}"

    def canonical_path(self, spec: str) -> Path:
        return self.coverage_dir / f"{spec}.json"

    def _read_json(self, path: Path) -> dict | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to read coverage artifact %s: %s. Treating as empty.", path, e)
            return None

    def _write_json(self, path: Path, data: dict) -> None:
        self.coverage_dir.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so an interrupted hook never leaves a torn file
        fd, tmp = tempfile.mkstemp(dir=self.coverage_dir, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("Saved coverage artifact %s", path)

    def _delete(self, path: Path) -> None:
        if path.exists():
            logger.debug("Deleting coverage artifact %s", path)
            path.unlink()

    def has_raw(self, spec: str) -> bool:
        return self.raw_path(spec).exists()

    def load_raw(self, spec: str) -> ProcessCoverage:
        data = self._read_json(self.raw_path(spec))
        if data is None:
            return ProcessCoverage()
        try:
            return ProcessCoverage.model_validate(data)
        except ValueError as e:
            logger.warning("Malformed raw coverage for %s: %s. Treating as empty.", spec, e)
            return ProcessCoverage()

    def save_raw(self, spec: str, coverage: ProcessCoverage) -> None:
        self._write_json(self.raw_path(spec), coverage.to_json())

    def delete_raw(self, spec: str) -> None:
        self._delete(self.raw_path(spec))

    def load_canonical(self, spec: str) -> CoverageMap:
        data = self._read_json(self.canonical_path(spec))
        if not data:
            return CoverageMap()
        try:
            return CoverageMap.from_json(data)
        except ValueError as e:
            logger.warning("Malformed coverage for %s: %s. Treating as empty.", spec, e)
            return CoverageMap()

    def save_canonical(self, spec: str, coverage_map: CoverageMap) -> None:
        self._write_json(self.canonical_path(spec), coverage_map.to_json())

    def delete_canonical(self, spec: str) -> None:
        self._delete(self.canonical_path(spec))

    def list_canonical(self) -> list[Path]:
        """Canonical artifacts currently in the coverage directory."""
        if not self.coverage_dir.exists():
            return []
        return sorted(
            p for p in self.coverage_dir.glob("*.json")
            if not p.name.endswith(RAW_SUFFIX) and not p.name.startswith(".")
        )


class MemoryCoverageStore(CoverageStore):
    """Keeps artifacts in dictionaries; used by tests and dry runs."""

    def __init__(self):
        self.raw: dict[str, dict] = {}
        self.canonical: dict[str, dict] = {}

    def has_raw(self, spec: str) -> bool:
        return spec in self.raw

    def load_raw(self, spec: str) -> ProcessCoverage:
        data = self.raw.get(spec)
        return ProcessCoverage.model_validate(data) if data else ProcessCoverage()

    def save_raw(self, spec: str, coverage: ProcessCoverage) -> None:
        self.raw[spec] = coverage.to_json()

    def delete_raw(self, spec: str) -> None:
        self.raw.pop(spec, None)

    def load_canonical(self, spec: str) -> CoverageMap:
        return CoverageMap.from_json(self.canonical.get(spec) or {})

    def save_canonical(self, spec: str, coverage_map: CoverageMap) -> None:
        self.canonical[spec] = coverage_map.to_json()

    def delete_canonical(self, spec: str) -> None:
        self.canonical.pop(spec, None)
