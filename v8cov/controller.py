"""Capture controller — reacts to the test runner's lifecycle hooks.

Per spec file: idle -> armed (before) -> capturing (before_each) ->
captured (after_each, back to capturing for the next test) -> finalized
(after). No hook ever raises into the test run; each returns a HookResult.
"""

from __future__ import annotations

import asyncio
import logging
import time

from v8cov.coverage.filter import filter_scripts
from v8cov.coverage.generate import generate_coverage
from v8cov.coverage.store import CoverageStore, DiskCoverageStore
from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import CoverageMap
from v8cov.models.result import HookResult
from v8cov.session import DebuggerSessionManager

logger = logging.getLogger(__name__)

IDLE = "idle"
ARMED = "armed"
CAPTURING = "capturing"
CAPTURED = "captured"
FINALIZED = "finalized"


class CaptureController:
    """Coordinates session, filter, store and conversion around each test."""

    def __init__(
        self,
        config: CoverageConfig,
        session_manager: DebuggerSessionManager | None = None,
        store: CoverageStore | None = None,
    ):
        self.config = config
        self.session_manager = session_manager or DebuggerSessionManager.from_config(config)
        self.store = store or DiskCoverageStore(config.coverage_dir)
        self.states: dict[str, str] = {}
        self._current_spec: str | None = None

    def state_of(self, spec: str) -> str:
        return self.states.get(spec, IDLE)

    def on_browser_launch(self, browser_name: str, args: list[str]) -> bool:
        return self.session_manager.handle_browser_launch(browser_name, args)

    async def before(self, spec: str) -> HookResult:
        """Remove stale raw and canonical artifacts left by an earlier run."""
        logger.debug("before() hook for %s", spec)
        try:
            self.store.purge(spec)
        except OSError as e:
            logger.warning("Could not clear old coverage for %s: %s", spec, e)
            self.states[spec] = ARMED
            self._current_spec = spec
            return HookResult.degraded(f"stale coverage not removed: {e}")

        self.states[spec] = ARMED
        self._current_spec = spec
        return HookResult.ok()

    async def before_each(self) -> HookResult:
        """Enable the profiler and start precise, call-counted, detailed coverage."""
        logger.debug("beforeEach() hook")
        manager = self.session_manager
        if not await manager.wait_connected(self.config.reconnect_wait_seconds):
            logger.warning("Connection was lost to the Chrome DevTools Protocol, unable to start coverage")
            return HookResult.degraded("no debugger session")

        enabled, started = await asyncio.gather(
            manager.enable_profiling(),
            manager.start_capture(call_count=True, detailed=True),
        )
        if not (enabled and started):
            return HookResult.degraded("coverage could not be started")

        if self._current_spec is not None:
            self.states[self._current_spec] = CAPTURING
        return HookResult.ok()

    async def after_each(self, spec: str) -> HookResult:
        """Take the test's coverage and merge it into the spec's raw artifact."""
        logger.debug("afterEach() hook for %s", spec)
        manager = self.session_manager
        if not manager.is_connected:
            logger.warning("Connection was lost to the Chrome DevTools Protocol, unable to take coverage")
            return HookResult.degraded("no debugger session")

        snapshot = await manager.stop_capture()
        if snapshot is None:
            return HookResult.degraded("coverage could not be taken")

        # Browser extensions, test-runner scripts and the like
        scripts = filter_scripts(snapshot.result, self.config)
        try:
            self.store.merge_and_save_raw(spec, snapshot.model_copy(update={"result": scripts}))
        except OSError as e:
            logger.warning("Could not save raw coverage for %s: %s", spec, e)
            return HookResult.fatal(f"raw coverage not saved: {e}")

        self.states[spec] = CAPTURED
        return HookResult.ok(data=len(scripts))

    async def after(self, spec: str) -> HookResult:
        """Convert the accumulated raw coverage and fold it into the canonical artifact."""
        logger.debug("after() hook for %s", spec)
        if not self.store.has_raw(spec):
            logger.debug(
                "V8 coverage file not found for %s, it was probably skipped. Skipping coverage creation.",
                spec,
            )
            self._finish(spec)
            return HookResult.degraded("no raw coverage")

        start = time.time()
        try:
            raw = self.store.load_raw(spec)
            existing = self.store.load_canonical(spec)
            increment = await asyncio.to_thread(generate_coverage, raw, self.config, existing)
            merged = self.store.merge_and_save_canonical(spec, increment)
            # Leftover raw files confuse downstream report tools
            self.store.delete_raw(spec)
        except Exception as e:
            logger.error("Could not finalize coverage for %s: %s", spec, e)
            logger.debug("Finalize failure details", exc_info=True)
            self._finish(spec)
            return HookResult.fatal(f"coverage not finalized: {e}")

        logger.info(
            "Collected coverage for %d files from %s in %.1fs",
            len(merged), spec, time.time() - start,
        )
        self._finish(spec)
        return HookResult.ok(data=merged)

    def _finish(self, spec: str) -> None:
        self.states[spec] = FINALIZED
        if self._current_spec == spec:
            self._current_spec = None

    async def close(self) -> None:
        await self.session_manager.close()


def finalize_offline(config: CoverageConfig, spec: str, store: CoverageStore | None = None) -> CoverageMap | None:
    """Promote a leftover raw artifact without a browser (e.g. after an aborted run)."""
    controller = CaptureController(config, session_manager=DebuggerSessionManager.from_config(config), store=store)
    result = asyncio.run(controller.after(spec))
    return result.data if result.is_ok else None
