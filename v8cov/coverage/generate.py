"""Turns an accumulated raw V8 report into canonical coverage."""

from __future__ import annotations

import logging

from v8cov.coverage.converter import convert_coverage
from v8cov.coverage.sources import resolve_sources
from v8cov.coverage.untested import add_untested_files
from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import CoverageMap, ProcessCoverage
from v8cov.url_utils import built_path_for_url

logger = logging.getLogger(__name__)


def generate_coverage(
    coverage: ProcessCoverage,
    config: CoverageConfig,
    existing: CoverageMap | None = None,
) -> CoverageMap:
    """Convert every script of ``coverage`` and return the new increment.

    ``existing`` is only consulted to tell which files already have
    coverage; the caller merges the increment into it exactly once.
    """
    coverage_map = CoverageMap()

    for script in coverage.result:
        # http://localhost:3000/assets/index-l1JwU4I9.js -> /code/dist/assets/index-l1JwU4I9.js
        file_path = built_path_for_url(script.url, config.build_dir)
        sources = resolve_sources(file_path)
        if sources is None or not sources.source:
            continue

        converted = convert_coverage(file_path, script.functions, sources)
        if converted:
            for fc in converted.values():
                coverage_map.merge(fc)

    if config.include_uncovered:
        logger.debug("include_uncovered is set, generating untested file coverage")
        added = add_untested_files(
            coverage_map, config, tested_files=existing.files() if existing else None,
        )
        logger.debug("Added %d untested files", added)

    return coverage_map
