"""Browser launch helpers — start Chromium with a remote debugging port."""

from __future__ import annotations

import socket
from typing import Callable, Optional

from playwright.async_api import Browser, Playwright

from v8cov.session import DEBUGGING_PORT_ARG, find_debugging_port


def find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def coverage_launch_args(args: Optional[list[str]] = None, port: Optional[int] = None) -> list[str]:
    """Return launch args that carry a debugging port, adding one if missing."""
    args = list(args or [])
    if find_debugging_port(args) is None:
        args.append(f"{DEBUGGING_PORT_ARG}={port or find_free_port()}")
    return args


async def launch_browser_with_coverage(
    playwright: Playwright,
    headless: bool = True,
    args: Optional[list[str]] = None,
    port: Optional[int] = None,
    on_launch: Optional[Callable[[str, list[str]], object]] = None,
) -> Browser:
    """Launch Chromium so a coverage session can attach to its debugging port.

    ``on_launch`` receives the browser name and the final launch args,
    e.g. ``V8CoveragePlugin.browser_launched``.
    """
    launch_args = coverage_launch_args(args, port)
    if on_launch is not None:
        on_launch(playwright.chromium.name, launch_args)
    return await playwright.chromium.launch(headless=headless, args=launch_args)
