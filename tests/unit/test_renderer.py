# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for RenderHost."""

import io
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from PIL import Image
from playwright.async_api import Error as PlaywrightError

from pagecast.core.renderer import (
    PageAdapter,
    RenderHost,
    RepaintAdapter,
    fingerprint_image,
)
from pagecast.exceptions import NavigationError, RendererError


def png(color, size=(320, 180)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def playwright_patch(mock_playwright):
    """Patch async_playwright() so start() returns mock_playwright."""
    with patch("pagecast.core.renderer.async_playwright") as mock_pw:
        mock_pw.return_value.start = AsyncMock(return_value=mock_playwright)
        yield mock_playwright


class TestFingerprint:
    """Tests for fingerprint_image()."""

    def test_identical_frames_match(self):
        assert fingerprint_image(png((10, 20, 30))) == fingerprint_image(png((10, 20, 30)))

    def test_small_noise_is_ignored(self):
        assert fingerprint_image(png((100, 100, 100))) == fingerprint_image(png((101, 101, 101)))

    def test_visible_change_differs(self):
        assert fingerprint_image(png((0, 0, 0))) != fingerprint_image(png((255, 255, 255)))


class TestRepaintAdapter:
    """Tests for RepaintAdapter."""

    @pytest.mark.asyncio
    async def test_waits_for_selector_then_repaints(self, mock_page):
        adapter = RepaintAdapter(".chart-container", selector_timeout=5.0)
        await adapter.prepare(mock_page)
        mock_page.wait_for_selector.assert_awaited_once_with(".chart-container", timeout=5000.0)
        mock_page.evaluate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_selector_is_not_fatal(self, mock_page):
        mock_page.wait_for_selector = AsyncMock(side_effect=PlaywrightError("Timeout"))
        await RepaintAdapter(".chart-container").prepare(mock_page)
        mock_page.evaluate.assert_awaited_once()


class TestRenderHostStart:
    """Tests for RenderHost.start()."""

    @pytest.mark.asyncio
    async def test_start_loads_page(self, config, playwright_patch, mock_page):
        host = RenderHost(config)

        await host.start(config.url, config.resolution, False, display_name=":99")

        launch = playwright_patch.chromium.launch
        launch.assert_awaited_once()
        kwargs = launch.await_args.kwargs
        assert kwargs["headless"] is False
        assert kwargs["env"]["DISPLAY"] == ":99"
        assert "--window-size=1280,720" in kwargs["args"]
        assert "--mute-audio" in kwargs["args"]
        mock_page.goto.assert_awaited_once_with(config.url, wait_until="load", timeout=60000.0)
        assert host.is_running is True

    @pytest.mark.asyncio
    async def test_audio_enables_autoplay(self, config, playwright_patch):
        host = RenderHost(config)
        await host.start(config.url, config.resolution, True)
        args = playwright_patch.chromium.launch.await_args.kwargs["args"]
        assert "--autoplay-policy=no-user-gesture-required" in args
        assert "env" not in playwright_patch.chromium.launch.await_args.kwargs

    @pytest.mark.asyncio
    async def test_runs_page_adapter(self, config, playwright_patch, mock_page):
        adapter = MagicMock(spec=PageAdapter)
        adapter.prepare = AsyncMock()
        host = RenderHost(config, adapter=adapter)

        await host.start(config.url, config.resolution, False)

        adapter.prepare.assert_awaited_once_with(mock_page)

    @pytest.mark.asyncio
    async def test_navigation_failure(self, config, playwright_patch, mock_page):
        mock_page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        host = RenderHost(config)

        with pytest.raises(NavigationError):
            await host.start(config.url, config.resolution, False)

        assert host.is_running is False
        playwright_patch.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_launch_failure(self, config, playwright_patch):
        playwright_patch.chromium.launch = AsyncMock(side_effect=PlaywrightError("no chromium"))
        host = RenderHost(config)

        with pytest.raises(RendererError, match="Failed to start browser"):
            await host.start(config.url, config.resolution, False)

    @pytest.mark.asyncio
    async def test_snapshot_written_and_removed(self, make_config, playwright_patch, mock_page, tmp_path):
        snapshot = tmp_path / "page.png"
        config = make_config(snapshot_path=str(snapshot))

        async def screenshot(path=None, **kwargs):
            with open(path, "wb") as f:
                f.write(b"png")

        mock_page.screenshot = AsyncMock(side_effect=screenshot)
        host = RenderHost(config)

        await host.start(config.url, config.resolution, False)
        assert snapshot.exists()

        await host.stop()
        assert not snapshot.exists()


class TestRenderHostRuntime:
    """Tests for fingerprinting, reloads and failure routing."""

    @pytest.mark.asyncio
    async def test_fingerprint_requires_started_host(self, config):
        with pytest.raises(RendererError):
            await RenderHost(config).capture_fingerprint()

    @pytest.mark.asyncio
    async def test_undecodable_screenshot_raises_renderer_error(self, config, playwright_patch, mock_page):
        host = RenderHost(config)
        await host.start(config.url, config.resolution, False)
        mock_page.screenshot = AsyncMock(return_value=b"not an image")

        with pytest.raises(RendererError, match="Failed to capture fingerprint"):
            await host.capture_fingerprint()

    @pytest.mark.asyncio
    async def test_fingerprint(self, config, playwright_patch, mock_page):
        host = RenderHost(config)
        await host.start(config.url, config.resolution, False)
        mock_page.screenshot = AsyncMock(return_value=png((1, 2, 3)))

        assert await host.capture_fingerprint() == fingerprint_image(png((1, 2, 3)))
        mock_page.screenshot.assert_awaited_with(type="jpeg", quality=30)

    @pytest.mark.asyncio
    async def test_force_reload(self, config, playwright_patch, mock_page):
        host = RenderHost(config)
        await host.start(config.url, config.resolution, False)

        assert await host.force_reload() is True
        mock_page.reload.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_force_reload_failure_returns_false(self, config, playwright_patch, mock_page):
        host = RenderHost(config)
        await host.start(config.url, config.resolution, False)
        mock_page.reload = AsyncMock(side_effect=PlaywrightError("Target closed"))

        assert await host.force_reload() is False

    @pytest.mark.asyncio
    async def test_force_reload_before_start(self, config):
        assert await RenderHost(config).force_reload() is False

    @pytest.mark.asyncio
    async def test_crash_routed_to_failure_callback(self, config, playwright_patch, mock_page):
        failures = []
        host = RenderHost(config, on_failure=failures.append)
        await host.start(config.url, config.resolution, False)

        handlers = {call.args[0]: call.args[1] for call in mock_page.on.call_args_list}
        handlers["crash"](mock_page)

        assert failures == ["Page crashed"]

    @pytest.mark.asyncio
    async def test_no_failure_reported_while_stopping(self, config, playwright_patch, mock_page):
        failures = []
        host = RenderHost(config, on_failure=failures.append)
        await host.start(config.url, config.resolution, False)
        handlers = {call.args[0]: call.args[1] for call in mock_page.on.call_args_list}

        await host.stop()
        handlers["close"](mock_page)

        assert failures == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config, playwright_patch):
        host = RenderHost(config)
        await host.stop()
        await host.start(config.url, config.resolution, False)
        await host.stop()
        await host.stop()
        playwright_patch.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stop_swallows_close_errors(self, config, playwright_patch, mock_page):
        host = RenderHost(config)
        await host.start(config.url, config.resolution, False)
        mock_page.close = AsyncMock(side_effect=PlaywrightError("Target closed"))

        await host.stop()

        playwright_patch.stop.assert_awaited_once()
