"""Shared URL utilities — map served script URLs back to build output."""

from __future__ import annotations

import os
from urllib.parse import unquote, urlparse


def url_path(url: str) -> str:
    """Extract the decoded path from a script URL."""
    return unquote(urlparse(url).path)


def built_path_for_url(url: str, build_dir: str) -> str:
    """Resolve ``http://host/assets/index-l1JwU4I9.js`` to ``{build_dir}/assets/index-l1JwU4I9.js``."""
    path = url_path(url).lstrip("/")
    return os.path.normpath(os.path.join(build_dir, path))


def starts_with_any(url: str, prefixes: list[str]) -> bool:
    return any(url.startswith(prefix) for prefix in prefixes)
