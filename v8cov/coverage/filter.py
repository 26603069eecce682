"""Script filter — keeps only the scripts that belong to the application under test."""

from __future__ import annotations

import logging

from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import ScriptCoverage
from v8cov.url_utils import starts_with_any
from v8cov.utils.globs import matches_any

logger = logging.getLogger(__name__)

VENDOR_MARKER = "/node_modules/"


def is_application_script(script: ScriptCoverage, config: CoverageConfig) -> bool:
    """Decide whether a raw script record is worth converting."""
    url = script.url

    # Browser extensions, test-runner scripts and other origins
    if not starts_with_any(url, config.base_urls):
        return False

    # Dependencies are never reported and are expensive to map
    if VENDOR_MARKER in url:
        return False

    if not matches_any(url, config.include_v8_patterns):
        return False
    return not matches_any(url, config.exclude_v8_patterns)


def filter_scripts(scripts: list[ScriptCoverage], config: CoverageConfig) -> list[ScriptCoverage]:
    kept = [s for s in scripts if is_application_script(s, config)]
    logger.debug("Kept %d of %d scripts after filtering", len(kept), len(scripts))
    return kept
