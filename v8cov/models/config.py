"""Configuration models for V8 coverage collection."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from v8cov.utils.globs import translate_glob

ENV_FLAG = "V8_COVERAGE"


def coverage_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Check the environment gate that switches the whole pipeline on."""
    environ = os.environ if environ is None else environ
    return environ.get(ENV_FLAG, "").strip().lower() in ("true", "1")


class CoverageConfig(BaseModel):
    # Defaults go through the validators too, so paths are always absolute
    model_config = ConfigDict(frozen=True, validate_default=True)

    # Output
    coverage_dir: str = "v8-coverage"

    # Application under test
    base_urls: list[str] = Field(default_factory=list)
    src_dir: str = "src"
    build_dir: str = "dist"

    # Source selection
    include_uncovered: bool = True
    include: list[str] = Field(
        default_factory=lambda: ["**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx"]
    )
    exclude: list[str] = Field(
        default_factory=lambda: [
            "**/*.spec.ts",
            "**/*.spec.tsx",
            "**/*.spec.jsx",
            "**/*.spec.js",
            "**/*.d.ts",
        ]
    )

    # Raw script selection, applied before any sourcemap work
    include_v8_patterns: list[str] = Field(default_factory=lambda: ["**/assets/**/*.js"])
    exclude_v8_patterns: list[str] = Field(default_factory=lambda: ["**/__cypress/**", "**/__/**"])

    # Debugger connection
    connect_delay_seconds: float = 1.0
    retry_interval_seconds: float = 1.0
    max_connect_attempts: Optional[int] = None
    # How long before_each waits for a reconnect already in flight
    # (a page closed by the previous test's teardown)
    reconnect_wait_seconds: float = 3.0

    # The after-hook converts every script of a spec, give it minutes
    finalize_timeout_seconds: float = 480.0

    @field_validator("coverage_dir", "src_dir", "build_dir")
    @classmethod
    def resolve_path(cls, v: str) -> str:
        return str(Path(v).expanduser().resolve())

    @field_validator("include", "exclude", "include_v8_patterns", "exclude_v8_patterns")
    @classmethod
    def validate_globs(cls, v: list[str]) -> list[str]:
        for pattern in v:
            if not pattern or not pattern.strip():
                raise ValueError("Glob patterns must not be empty")
            translate_glob(pattern)
        return v

    @field_validator("max_connect_attempts")
    @classmethod
    def validate_attempts(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_connect_attempts must be at least 1")
        return v

    @classmethod
    def load(cls, path: str | Path) -> "CoverageConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
