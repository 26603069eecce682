"""Debugger session manager — owns the single Chrome DevTools Protocol session.

The session is opened in the background once the browser's debugging port
is known, retried on a fixed interval, and re-opened after a disconnect.
Capture calls never raise: without a session they warn and return None.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Protocol

from playwright.async_api import Browser, CDPSession, Page, Playwright, async_playwright

from v8cov.models.config import CoverageConfig
from v8cov.models.coverage import ProcessCoverage

logger = logging.getLogger(__name__)

DEBUGGING_PORT_ARG = "--remote-debugging-port"
V8_BROWSERS = ("chrome", "chromium", "msedge", "edge", "electron")

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"


class ProfilerSession(Protocol):
    async def send(self, method: str, params: Optional[dict] = None) -> dict: ...

    def on_disconnect(self, callback: Callable[[], None]) -> None: ...

    async def close(self) -> None: ...


Connector = Callable[[int], Awaitable[ProfilerSession]]


class PlaywrightSession:
    """A CDP session on a page, as handed out by Playwright."""

    def __init__(self, cdp: CDPSession, page: Page, browser: Browser | None = None):
        self.cdp = cdp
        self.page = page
        self.browser = browser
        self._callbacks: list[Callable[[], None]] = []
        self._fired = False
        page.on("close", lambda _page: self._fire())
        if browser is not None:
            browser.on("disconnected", lambda _browser: self._fire())

    def _fire(self) -> None:
        if self._fired:
            return
        self._fired = True
        for callback in self._callbacks:
            callback()

    async def send(self, method: str, params: Optional[dict] = None) -> dict:
        return await self.cdp.send(method, params or {})

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    async def close(self) -> None:
        try:
            await self.cdp.detach()
        finally:
            # A browser reached over CDP is only disconnected from, never killed
            if self.browser is not None and self.browser.is_connected():
                await self.browser.close()


class PlaywrightConnector:
    """Opens a profiler session on the first page of a browser listening on a debugging port."""

    def __init__(self, host: str = "127.0.0.1"):
        self.host = host
        self._playwright: Playwright | None = None

    async def __call__(self, port: int) -> PlaywrightSession:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

        browser = await self._playwright.chromium.connect_over_cdp(f"http://{self.host}:{port}")
        page = next((p for context in browser.contexts for p in context.pages), None)
        if page is None:
            await browser.close()
            raise ConnectionError("No inspectable targets")

        cdp = await page.context.new_cdp_session(page)
        return PlaywrightSession(cdp, page, browser)

    async def stop(self) -> None:
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


def find_debugging_port(args: list[str]) -> Optional[int]:
    """Extract the port from ``--remote-debugging-port=50052`` (or a separate value)."""
    for i, arg in enumerate(args):
        if not arg.startswith(DEBUGGING_PORT_ARG):
            continue
        if "=" in arg:
            value = arg.split("=", 1)[1]
        elif i + 1 < len(args):
            value = args[i + 1]
        else:
            return None
        try:
            return int(value)
        except ValueError:
            return None
    return None


class DebuggerSessionManager:
    """Connection state machine: disconnected -> connecting -> connected."""

    def __init__(
        self,
        connector: Connector | None = None,
        connect_delay: float = 1.0,
        retry_interval: float = 1.0,
        max_attempts: int | None = None,
    ):
        self._connector = connector or PlaywrightConnector()
        self.connect_delay = connect_delay
        self.retry_interval = retry_interval
        self.max_attempts = max_attempts
        self.state = DISCONNECTED
        self.port: int | None = None
        self._session: ProfilerSession | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @classmethod
    def from_config(cls, config: CoverageConfig, connector: Connector | None = None) -> "DebuggerSessionManager":
        return cls(
            connector=connector,
            connect_delay=config.connect_delay_seconds,
            retry_interval=config.retry_interval_seconds,
            max_attempts=config.max_connect_attempts,
        )

    @property
    def session(self) -> ProfilerSession | None:
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def handle_browser_launch(self, browser_name: str, args: list[str]) -> bool:
        """Inspect launch arguments and start connecting in the background."""
        if not any(name in browser_name.lower() for name in V8_BROWSERS):
            logger.warning("You are trying to obtain coverage from a non-V8 browser: %s", browser_name)
            return False

        logger.debug("Launching %s with args %s", browser_name, args)
        port = find_debugging_port(args)
        if port is None:
            logger.warning("Could not find launch argument that starts with %s", DEBUGGING_PORT_ARG)
            return False

        logger.debug("Using remote debugging port %d", port)
        self.connect(port)
        return True

    def connect(self, port: int, delay: float | None = None) -> asyncio.Task:
        """Schedule connection attempts; must be called with a running event loop."""
        self.port = port
        self._closed = False
        return self._spawn(self._connect_loop(port, self.connect_delay if delay is None else delay))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _connect_loop(self, port: int, delay: float, disconnected: bool = False) -> None:
        # Give the browser time to start (or to come back after a disconnect)
        await asyncio.sleep(delay)
        attempts = 0
        while not self._closed and self._session is None:
            attempts += 1
            self.state = CONNECTING
            logger.debug("Attempting to connect to Chrome DevTools Protocol on port %d...", port)
            try:
                session = await self._connector(port)
            except Exception as e:
                self.state = DISCONNECTED
                if disconnected:
                    # No error and no retry: after a disconnect this is most
                    # likely the end of the run ("No inspectable targets",
                    # ECONNREFUSED)
                    logger.debug(
                        "Could not reconnect to Chrome DevTools Protocol after a disconnect, "
                        "the test suite has probably finished: %s", e,
                    )
                    return
                if self.max_attempts is not None and attempts >= self.max_attempts:
                    logger.error(
                        "Giving up connecting to Chrome DevTools Protocol after %d attempts: %s",
                        attempts, e,
                    )
                    return
                logger.error("Error while connecting to Chrome DevTools Protocol: %s. Retrying...", e)
                await asyncio.sleep(self.retry_interval)
                continue

            self._attach(session)
            logger.debug("Successfully connected to Chrome DevTools Protocol")
            return

    def _attach(self, session: ProfilerSession) -> None:
        self._session = session
        self.state = CONNECTED
        session.on_disconnect(lambda: self._handle_disconnect(session))

    def _handle_disconnect(self, session: ProfilerSession) -> None:
        if self._session is not session:
            return
        logger.debug("Chrome DevTools Protocol was disconnected")
        self._session = None
        self.state = DISCONNECTED
        if not self._closed and self.port is not None:
            self._spawn(self._connect_loop(self.port, self.retry_interval, disconnected=True))

    async def wait_connected(self, timeout: float) -> bool:
        """Give an in-flight (re)connection up to ``timeout`` seconds to finish.

        Returns immediately when connected or when no attempt is pending.
        """
        deadline = time.monotonic() + timeout
        while self._session is None and not self._closed and self._tasks:
            if time.monotonic() >= deadline:
                break
            await asyncio.sleep(0.05)
        return self._session is not None

    async def attach_page(self, page: Page) -> None:
        """Profile an already-open Playwright page in-process, no debugging port needed."""
        cdp = await page.context.new_cdp_session(page)
        self._attach(PlaywrightSession(cdp, page))

    async def close(self) -> None:
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        session, self._session = self._session, None
        self.state = DISCONNECTED
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.debug("Error while closing the debugger session: %s", e)

        stop = getattr(self._connector, "stop", None)
        if stop is not None:
            await stop()

    # ------------------------------------------------------------------
    # Capture API
    # ------------------------------------------------------------------

    async def _send(self, method: str, params: Optional[dict] = None, action: str = "") -> Optional[Any]:
        session = self._session
        if session is None:
            logger.warning(
                "Connection was lost to the Chrome DevTools Protocol, unable to %s",
                action or method,
            )
            return None
        try:
            result = await session.send(method, params)
        except Exception as e:
            logger.warning("Chrome DevTools Protocol call %s failed: %s", method, e)
            return None
        return {} if result is None else result

    async def enable_profiling(self) -> bool:
        return await self._send("Profiler.enable", action="enable the profiler") is not None

    async def start_capture(self, call_count: bool = True, detailed: bool = True) -> bool:
        result = await self._send(
            "Profiler.startPreciseCoverage",
            {"callCount": call_count, "detailed": detailed},
            action="start coverage",
        )
        return result is not None

    async def take_snapshot(self) -> Optional[ProcessCoverage]:
        result = await self._send("Profiler.takePreciseCoverage", action="take coverage")
        if result is None:
            return None
        return ProcessCoverage.model_validate({"result": result.get("result", [])})

    async def stop_capture(self) -> Optional[ProcessCoverage]:
        """Take the coverage gathered since the last snapshot, then stop collecting."""
        snapshot = await self.take_snapshot()
        if snapshot is not None:
            await self._send("Profiler.stopPreciseCoverage", action="stop coverage")
        return snapshot
