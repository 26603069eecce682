"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path
from typing import Any

import pytest

from v8cov.coverage.store import MemoryCoverageStore
from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import CoverageRange, FunctionCoverage, ProcessCoverage, ScriptCoverage
from v8cov.session import DebuggerSessionManager

BASE_URL = "http://localhost:5173/"
SCRIPT_URL = "http://localhost:5173/assets/index.js"

APP_TSX = 'export function App() {\n  return "hello";\n}\nApp();\n'
UNUSED_TSX = "export function Unused() {\n  return 1;\n}\n"
BUILT_JS = 'function App(){return "hello"}App();\n'
# function App(){ -> 1:0, return -> 2:2, } -> 3:0, App -> 4:0, ; -> 4:5, end -> 4:6
BUILT_MAPPINGS = "AAAA,eACE,cACF,CACA,KAAK,CAAC"


# ============================================================================
# Fake debugger transport
# ============================================================================


class FakeSession:
    """Stands in for a CDP session: records calls, replays a coverage payload."""

    def __init__(self, coverage: dict | None = None, fail_on: set[str] | None = None):
        self.coverage = coverage or {"result": []}
        self.fail_on = fail_on or set()
        self.calls: list[tuple[str, Any]] = []
        self.closed = False
        self._callbacks = []

    async def send(self, method: str, params: dict | None = None) -> dict:
        self.calls.append((method, params))
        if method in self.fail_on:
            raise RuntimeError(f"{method} failed")
        if method == "Profiler.takePreciseCoverage":
            return self.coverage
        return {}

    def on_disconnect(self, callback) -> None:
        self._callbacks.append(callback)

    def disconnect(self) -> None:
        for callback in self._callbacks:
            callback()

    async def close(self) -> None:
        self.closed = True

    @property
    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]


class FakeConnector:
    """Returns (or raises) the queued outcomes in order; repeats the last one."""

    def __init__(self, outcomes: list):
        self.outcomes = list(outcomes)
        self.attempts: list[int] = []

    async def __call__(self, port: int):
        self.attempts.append(port)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def connected_manager(session: FakeSession) -> DebuggerSessionManager:
    manager = DebuggerSessionManager(
        connector=FakeConnector([session]), connect_delay=0, retry_interval=0,
    )
    await manager.connect(9222)
    return manager


def script(url: str, ranges: list[tuple[int, int, int]], name: str = "", block: bool = True) -> ScriptCoverage:
    return ScriptCoverage(
        script_id="1",
        url=url,
        functions=[
            FunctionCoverage(
                function_name=name,
                ranges=[CoverageRange(start_offset=s, end_offset=e, count=c) for s, e, c in ranges],
                is_block_coverage=block,
            )
        ],
    )


def report(*scripts: ScriptCoverage) -> ProcessCoverage:
    return ProcessCoverage(result=list(scripts))


# ============================================================================
# Project layout fixtures
# ============================================================================


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A built app: src/ with two components and a spec, dist/ with one mapped bundle."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "App.tsx").write_text(APP_TSX)
    (src / "Unused.tsx").write_text(UNUSED_TSX)
    (src / "App.spec.tsx").write_text("test('app', () => {});\n")
    (src / "types.d.ts").write_text("declare const x: number;\n")

    assets = tmp_path / "dist" / "assets"
    assets.mkdir(parents=True)
    (assets / "index.js").write_text(BUILT_JS)
    (assets / "index.js.map").write_text(json.dumps({
        "version": 3,
        "file": "index.js",
        "sources": ["../../src/App.tsx"],
        "names": [],
        "mappings": BUILT_MAPPINGS,
    }))
    return tmp_path


@pytest.fixture
def coverage_config(project_dir: Path) -> CoverageConfig:
    return CoverageConfig(
        coverage_dir=str(project_dir / "coverage"),
        base_urls=[BASE_URL],
        src_dir=str(project_dir / "src"),
        build_dir=str(project_dir / "dist"),
        connect_delay_seconds=0,
        retry_interval_seconds=0,
        reconnect_wait_seconds=0,
    )


@pytest.fixture
def memory_store() -> MemoryCoverageStore:
    return MemoryCoverageStore()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
