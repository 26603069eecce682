"""Source resolver — loads a built file and its co-located source map."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from v8cov.sourcemap import SourceMap

logger = logging.getLogger(__name__)


@dataclass
class SourceBundle:
    """Everything the converter needs for one built file."""
    source: str
    original_source: str
    source_map: Optional[SourceMap] = None


def _absolute_source(source: str, map_dir: str, source_root: str) -> str:
    if source.startswith("file://"):
        source = source[len("file://"):]
    return os.path.normpath(os.path.join(map_dir, source_root, source))


def load_source_map(map_path: Path) -> SourceMap:
    """Parse a ``.map`` file and rewrite its sources to absolute paths.

    Raises OSError, ValueError (including JSON errors) for unusable maps.
    """
    with open(map_path, encoding="utf-8") as f:
        data = json.load(f)

    source_map = SourceMap.from_json(data)
    map_dir = str(map_path.parent.resolve())
    source_root = data.get("sourceRoot") or ""
    # "../../src/App.tsx" next to dist/assets/index.js.map -> /code/src/App.tsx
    source_map.sources = [
        _absolute_source(s, map_dir, source_root) for s in source_map.sources
    ]
    return source_map


def resolve_sources(built_path: str | Path) -> Optional[SourceBundle]:
    """Read a built file and, if present, its ``{file}.map``.

    Returns None when the built file itself cannot be read. A missing or
    broken map only loses the back-translation to original sources.
    """
    built_path = Path(built_path)
    logger.debug("Getting sources for: %s", built_path)

    try:
        code = built_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read built file %s: %s", built_path, e)
        return None

    source_map = None
    map_path = Path(f"{built_path}.map")
    try:
        source_map = load_source_map(map_path)
    except FileNotFoundError:
        logger.warning("No source map for file %s, reporting the built file itself", built_path)
    except (OSError, ValueError) as e:
        logger.warning("Error reading map file for file %s: %s", built_path, e)

    return SourceBundle(source=code, original_source=code, source_map=source_map)
