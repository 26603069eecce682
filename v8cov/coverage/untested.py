"""Untested-file synthesizer — zero-coverage entries for sources never loaded."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from v8cov.coverage.converter import EMPTY_REPORT, convert_coverage, utf16_len
from v8cov.coverage.merge import merge_process_coverages
from v8cov.coverage.sources import SourceBundle
from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import (
    CoverageMap,
    CoverageRange,
    FunctionCoverage,
    ProcessCoverage,
    ScriptCoverage,
)
from v8cov.utils.globs import find_files

logger = logging.getLogger(__name__)


def list_source_files(config: CoverageConfig) -> list[str]:
    """Absolute paths of every source file selected by include/exclude."""
    return [
        os.path.normpath(os.path.join(config.src_dir, rel))
        for rel in find_files(config.src_dir, config.include, config.exclude)
    ]


def untested_file_coverage(tested_files: list[str], config: CoverageConfig) -> ProcessCoverage:
    """Fabricate one whole-file, zero-count record per untested source file."""
    tested = set(tested_files)
    untested = [f for f in list_source_files(config) if f not in tested]

    reports = []
    for file in untested:
        try:
            text = Path(file).read_text(encoding="utf-8")
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable source file %s: %s", file, e)
            continue
        # Not a real function: marks the whole file as uncovered
        empty = FunctionCoverage(
            function_name=EMPTY_REPORT,
            ranges=[CoverageRange(start_offset=0, end_offset=utf16_len(text), count=0)],
            is_block_coverage=True,
        )
        reports.append(ProcessCoverage(result=[ScriptCoverage(script_id="0", url=file, functions=[empty])]))

    return merge_process_coverages(reports)


def add_untested_files(coverage_map: CoverageMap, config: CoverageConfig, tested_files: list[str] | None = None) -> int:
    """Merge zero-coverage records for untested sources into ``coverage_map``.

    Returns the number of files added.
    """
    tested = list(coverage_map.files()) + list(tested_files or [])
    untested = untested_file_coverage(tested, config)

    added = 0
    for script in untested.result:
        logger.debug("Creating istanbul coverage for untested file: %s", script.url)
        # Empty sources make the converter read the file itself
        converted = convert_coverage(
            script.url, script.functions, SourceBundle(source="", original_source=""),
        )
        if converted:
            for fc in converted.values():
                coverage_map.merge(fc)
            added += 1
    return added
