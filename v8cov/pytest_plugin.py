"""Pytest integration — drives the capture hooks around every test module.

Inert unless ``V8_COVERAGE=true``. A test module is one "spec": its first
test triggers ``before``, every test is wrapped in ``before_each`` /
``after_each``, and the module's last test triggers ``after``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
import threading
from pathlib import Path
from typing import Any, Coroutine, Optional

import pytest

from v8cov.controller import CaptureController
from v8cov.models.config import CoverageConfig, coverage_enabled
from v8cov.models.result import HookResult

logger = logging.getLogger(__name__)

PLUGIN_NAME = "v8cov-capture"
PORT_ENV = "V8_COVERAGE_PORT"
HOOK_TIMEOUT_SECONDS = 60.0


class LoopThread:
    """An event loop on a daemon thread, so background reconnects outlive each hook."""

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name="v8cov-loop", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> None:
        self._thread.start()

    def run(self, coro: Coroutine, timeout: Optional[float] = None) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def stop(self) -> None:
        if not self._thread.is_alive():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        if not self._thread.is_alive():
            self.loop.close()


def spec_name(item: pytest.Item) -> str:
    return Path(str(item.path)).name


class V8CoveragePlugin:
    def __init__(self, config: CoverageConfig, controller: CaptureController | None = None):
        self.config = config
        self.controller = controller or CaptureController(config)
        self.runner = LoopThread()
        self._spec: str | None = None

    def start(self, port: int | None = None) -> None:
        self.runner.start()
        if port is not None:
            self.browser_launched("chromium", [f"--remote-debugging-port={port}"])

    def _call(self, coro: Coroutine, timeout: float = HOOK_TIMEOUT_SECONDS) -> Any:
        # Coverage is best effort: nothing here may fail the test run
        try:
            return self.runner.run(coro, timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Coverage hook timed out after %.0fs", timeout)
        except Exception as e:
            logger.warning("Coverage hook failed: %s", e)
        return None

    def browser_launched(self, browser_name: str, args: list[str]) -> bool:
        """Report a browser launch so the session manager can find its debugging port."""
        async def _launch() -> bool:
            return self.controller.on_browser_launch(browser_name, args)

        return bool(self._call(_launch()))

    def attach_page(self, page) -> None:
        """Profile a page created on this plugin's event loop."""
        self._call(self.controller.session_manager.attach_page(page))

    def _finalize(self, spec: str) -> Optional[HookResult]:
        self._spec = None
        return self._call(self.controller.after(spec), self.config.finalize_timeout_seconds)

    # Setup runs last so browser/page fixtures already exist
    @pytest.hookimpl(trylast=True)
    def pytest_runtest_setup(self, item: pytest.Item) -> None:
        spec = spec_name(item)
        if spec != self._spec:
            if self._spec is not None:
                self._finalize(self._spec)
            self._spec = spec
            self._call(self.controller.before(spec))
        self._call(self.controller.before_each())

    # Teardown runs first so coverage is taken before the page fixture closes
    @pytest.hookimpl(tryfirst=True)
    def pytest_runtest_teardown(self, item: pytest.Item, nextitem: Optional[pytest.Item]) -> None:
        spec = spec_name(item)
        self._call(self.controller.after_each(spec))
        if nextitem is None or spec_name(nextitem) != spec:
            self._finalize(spec)

    def pytest_unconfigure(self, config: pytest.Config) -> None:
        if self._spec is not None:
            self._finalize(self._spec)
        self._call(self.controller.close(), 30)
        self.runner.stop()


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addini("v8_coverage_config", "Path to a v8cov JSON configuration file", default="")
    parser.addini(
        "v8_coverage_port",
        "Remote debugging port of an already running browser to collect coverage from",
        default="",
    )


def load_config(config: pytest.Config) -> CoverageConfig:
    path = config.getini("v8_coverage_config")
    cov_config = CoverageConfig.load(config.rootpath / path) if path else CoverageConfig()

    base_url = config.getoption("base_url", None)
    if not cov_config.base_urls and base_url:
        cov_config = cov_config.model_copy(update={"base_urls": [base_url]})
    return cov_config


def _configured_port(config: pytest.Config) -> int | None:
    value = os.environ.get(PORT_ENV) or config.getini("v8_coverage_port")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring invalid debugging port %r", value)
        return None


def pytest_configure(config: pytest.Config) -> None:
    if not coverage_enabled():
        logger.debug("V8_COVERAGE environment variable not set, skipping v8 coverage generation")
        return

    try:
        cov_config = load_config(config)
    except (FileNotFoundError, ValueError) as e:
        logger.warning("V8 coverage disabled, invalid configuration: %s", e)
        return

    logger.debug("Using options %s", cov_config.model_dump())
    plugin = V8CoveragePlugin(cov_config)
    plugin.start(_configured_port(config))
    config.pluginmanager.register(plugin, PLUGIN_NAME)


@pytest.fixture
def v8_coverage(request: pytest.FixtureRequest) -> Optional[V8CoveragePlugin]:
    """The active coverage plugin, or None when coverage is switched off."""
    return request.config.pluginmanager.get_plugin(PLUGIN_NAME)
