"""Tests for browser launch helpers — debugging port wiring."""

import pytest
from unittest.mock import AsyncMock, MagicMock, Mock

from v8cov.session import find_debugging_port
from v8cov.utils.browser import coverage_launch_args, find_free_port, launch_browser_with_coverage


class TestCoverageLaunchArgs:
    """Tests for coverage_launch_args."""

    def test_adds_port(self):
        args = coverage_launch_args(["--headless"], port=9222)
        assert args == ["--headless", "--remote-debugging-port=9222"]

    def test_keeps_existing_port(self):
        args = coverage_launch_args(["--remote-debugging-port=50052"], port=9222)
        assert args == ["--remote-debugging-port=50052"]

    def test_picks_free_port(self):
        port = find_debugging_port(coverage_launch_args())
        assert port is not None and port > 0

    def test_find_free_port(self):
        assert 0 < find_free_port() < 65536


class TestLaunchBrowserWithCoverage:
    @pytest.mark.asyncio
    async def test_launch_reports_args(self):
        """The launch callback sees the same args Chromium is started with."""
        playwright = MagicMock()
        playwright.chromium.name = "chromium"
        browser = AsyncMock()
        playwright.chromium.launch = AsyncMock(return_value=browser)
        on_launch = Mock()

        result = await launch_browser_with_coverage(playwright, port=9333, on_launch=on_launch)

        assert result is browser
        on_launch.assert_called_once_with("chromium", ["--remote-debugging-port=9333"])
        call_kwargs = playwright.chromium.launch.call_args.kwargs
        assert call_kwargs == {"headless": True, "args": ["--remote-debugging-port=9333"]}
