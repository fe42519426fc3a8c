# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Shared fixtures for Pagecast tests."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pagecast.config import RunConfiguration


@pytest.fixture
def make_config():
    """Factory for fast, test-friendly run configurations."""

    def factory(**overrides):
        values = dict(
            url="https://example.com/live",
            stream_key="test-stream-key",
            retry_delay=0.0,
            max_retries=3,
            rotation_interval=None,
            use_virtual_display=True,
            render_settle=0.0,
            snapshot_path=None,
            startup_timeout=5.0,
            asset_timeout=0.02,
            health_period=3600.0,
        )
        values.update(overrides)
        return RunConfiguration(**values)

    return factory


@pytest.fixture
def config(make_config):
    return make_config()


@pytest.fixture
def mock_page():
    """A Playwright page double."""
    page = MagicMock()
    page.goto = AsyncMock()
    page.reload = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.evaluate = AsyncMock()
    page.screenshot = AsyncMock(return_value=b"")
    page.close = AsyncMock()
    return page


@pytest.fixture
def mock_playwright(mock_page):
    """A started Playwright double whose chromium launches mock_page."""
    context = MagicMock()
    context.new_page = AsyncMock(return_value=mock_page)
    context.close = AsyncMock()

    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()
    return playwright
