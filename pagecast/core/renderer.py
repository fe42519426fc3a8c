# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Render host for Pagecast.

This module provides the RenderHost class which owns one Playwright
browser session: it launches the browser onto the display surface, loads
the target page, applies the post-navigation page adapter and keeps the
page live. It also exposes the cheap fingerprint used by the health
monitor and the in-place reload used to recover from stale rendering.

Transport-level errors from the browser (page crash, unexpected page
close, browser disconnect) are routed to the failure callback instead of
being left as silent inconsistent state.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import os
from typing import Callable, Dict, List, Optional

from PIL import Image
from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError

from pagecast.config import Resolution, RunConfiguration
from pagecast.core.session import SessionHandle
from pagecast.exceptions import NavigationError, RendererError
from pagecast.utils.logger import logger

FailureCallback = Callable[[str], None]

# Nudges the compositor into repainting pages that render lazily.
REPAINT_SCRIPT = """
() => new Promise(resolve => {
    document.body.style.zoom = 1.001;
    requestAnimationFrame(() => {
        document.body.style.zoom = 1;
        requestAnimationFrame(() => {
            window.scrollTo(0, 1);
            window.scrollTo(0, 0);
            resolve();
        });
    });
})
"""

FINGERPRINT_SIZE = (32, 18)


class PageAdapter:
    """Hook run after every navigation or reload of the target page.

    Site-specific steps (dismissing banners, pressing play) belong in a
    subclass. The base adapter does nothing.
    """

    async def prepare(self, page: Page) -> None:
        return None


class RepaintAdapter(PageAdapter):
    """Waits for an optional ready selector, then forces a repaint."""

    def __init__(self, ready_selector: Optional[str] = None, selector_timeout: float = 30.0) -> None:
        self.ready_selector = ready_selector
        self.selector_timeout = selector_timeout

    async def prepare(self, page: Page) -> None:
        if self.ready_selector:
            try:
                await page.wait_for_selector(
                    self.ready_selector, timeout=self.selector_timeout * 1000
                )
                logger.info(f"[RENDERER] Found {self.ready_selector}")
            except PlaywrightError:
                logger.warning(
                    f"[RENDERER] Could not find {self.ready_selector}, continuing anyway"
                )
        await page.evaluate(REPAINT_SCRIPT)


def fingerprint_image(data: bytes) -> bytes:
    """Reduce an encoded screenshot to a coarse, lossy digest.

    The image is shrunk to a tiny greyscale thumbnail and quantised to
    16 levels before hashing, so encoder noise does not count as change.
    """
    with Image.open(io.BytesIO(data)) as image:
        thumb = image.convert("L").resize(FINGERPRINT_SIZE)
        quantised = thumb.point(lambda value: value >> 4)
        return hashlib.sha1(quantised.tobytes()).digest()


class RenderHost:
    """
    Owns one browser session rendering the target page.

    Attributes:
        config: Shared run configuration
        adapter: Post-navigation page adapter

    Example:
        >>> host = RenderHost(config, on_failure=print)
        >>> await host.start(config.url, config.resolution, audio_enabled=False)
        >>> fingerprint = await host.capture_fingerprint()
        >>> await host.stop()
    """

    def __init__(
        self,
        config: RunConfiguration,
        adapter: Optional[PageAdapter] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        self.config = config
        self.adapter = adapter or RepaintAdapter(config.ready_selector)
        self._on_failure = on_failure
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._handle: Optional[SessionHandle] = None
        self._stopping = False
        self._snapshot_written: Optional[str] = None

    def set_failure_callback(self, callback: Optional[FailureCallback]) -> None:
        self._on_failure = callback

    @property
    def is_running(self) -> bool:
        return self._page is not None and not self._stopping

    @property
    def page(self) -> Page:
        """Get the current page."""
        if not self._page:
            raise RendererError("No active page. Call start() first.")
        return self._page

    def _launch_args(self, resolution: Resolution, audio_enabled: bool) -> List[str]:
        args = [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-gpu",
            "--disable-dev-shm-usage",
            "--disable-web-security",
            f"--window-size={resolution.width},{resolution.height}",
            "--window-position=0,0",
            "--kiosk",
        ]
        if audio_enabled:
            args.append("--autoplay-policy=no-user-gesture-required")
        else:
            args.append("--mute-audio")
        return args

    def _launch_env(self, display_name: Optional[str]) -> Optional[Dict[str, str]]:
        if not display_name:
            return None
        env = dict(os.environ)
        env["DISPLAY"] = display_name
        return env

    async def start(
        self,
        url: str,
        resolution: Resolution,
        audio_enabled: bool,
        display_name: Optional[str] = None,
    ) -> None:
        """
        Launch the browser, load the page and wait until it renders.

        Raises:
            RendererError: If the browser cannot be launched or prepared
            NavigationError: If the page fails to load in time
        """
        if self._page is not None:
            raise RendererError("Render host already started; stop it first")

        self._stopping = False
        timeout_ms = self.config.navigation_timeout * 1000
        try:
            logger.info(f"[RENDERER] Starting browser (headless={self.config.run_headless})")
            self._playwright = await async_playwright().start()
            launch_options = {
                "headless": self.config.run_headless,
                "args": self._launch_args(resolution, audio_enabled),
            }
            env = self._launch_env(display_name)
            if env is not None:
                launch_options["env"] = env
            self._browser = await self._playwright.chromium.launch(**launch_options)
            self._browser.on("disconnected", self._on_disconnected)

            self._context = await self._browser.new_context(
                viewport={"width": resolution.width, "height": resolution.height},
                device_scale_factor=1,
            )
            page = await self._context.new_page()
            page.set_default_timeout(timeout_ms)
            page.set_default_navigation_timeout(timeout_ms)
            page.on("console", self._on_console)
            page.on("crash", self._on_crash)
            page.on("close", self._on_close)
            self._page = page
            self._handle = SessionHandle(kind="renderer")
        except Exception as e:
            logger.error(f"[RENDERER] Failed to start browser: {e}")
            await self.stop()
            raise RendererError(f"Failed to start browser: {e}") from e

        try:
            await self._navigate(url, timeout_ms)
            await self.adapter.prepare(self._page)
            logger.info("[RENDERER] Waiting for page to render...")
            await asyncio.sleep(self.config.render_settle)
            await self._write_snapshot()
        except NavigationError:
            await self.stop()
            raise
        except Exception as e:
            logger.error(f"[RENDERER] Page preparation failed: {e}")
            await self.stop()
            raise RendererError(f"Failed to prepare page: {e}") from e

        self._handle.mark_alive()
        logger.info("[RENDERER] Page loaded and rendered")

    async def _navigate(self, url: str, timeout_ms: float) -> None:
        try:
            logger.info(f"[RENDERER] Navigating to {url}...")
            await self._page.goto(url, wait_until="load", timeout=timeout_ms)
        except Exception as e:
            logger.error(f"[RENDERER] Navigation failed: {e}")
            raise NavigationError(f"Failed to navigate to {url}: {e}") from e
        try:
            await self._page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except PlaywrightError:
            logger.info("[RENDERER] Network never went idle, continuing")

    async def _write_snapshot(self) -> None:
        path = self.config.snapshot_path
        if not path:
            return
        await self._page.screenshot(path=path, full_page=True)
        self._snapshot_written = path
        logger.info(f"[RENDERER] Screenshot saved to {path}")

    async def capture_fingerprint(self) -> bytes:
        """
        Capture a low-fidelity fingerprint of the visible viewport.

        Returns:
            Opaque digest; equal digests mean "no visible change"

        Raises:
            RendererError: If no page is live or the capture fails
        """
        page = self.page
        try:
            data = await page.screenshot(type="jpeg", quality=30)
            fingerprint = fingerprint_image(data)
        except Exception as e:
            raise RendererError(f"Failed to capture fingerprint: {e}") from e
        if self._handle:
            self._handle.mark_alive()
        return fingerprint

    async def force_reload(self) -> bool:
        """Reload the page in place and re-run the page adapter.

        Returns:
            True if the page reloaded, False otherwise (never raises)
        """
        if self._page is None or self._stopping:
            return False
        try:
            logger.warning("[RENDERER] Forcing page reload")
            await self._page.reload(
                wait_until="load", timeout=self.config.navigation_timeout * 1000
            )
            await self.adapter.prepare(self._page)
            logger.info("[RENDERER] Page reloaded")
            return True
        except Exception as e:
            logger.error(f"[RENDERER] Page reload failed: {e}")
            return False

    def _report_failure(self, reason: str) -> None:
        if self._stopping:
            return
        logger.error(f"[RENDERER] {reason}")
        if self._handle:
            self._handle.mark_failed()
        if self._on_failure:
            self._on_failure(reason)

    def _on_console(self, message) -> None:
        logger.debug(f"[RENDERER] Browser console: {message.text}")

    def _on_crash(self, page) -> None:
        self._report_failure("Page crashed")

    def _on_close(self, page) -> None:
        self._report_failure("Page closed unexpectedly")

    def _on_disconnected(self, browser) -> None:
        self._report_failure("Browser disconnected")

    async def stop(self) -> None:
        """Close the browser session. Safe to call repeatedly or before start()."""
        self._stopping = True
        page, context, browser, playwright = (
            self._page, self._context, self._browser, self._playwright
        )
        self._page = self._context = self._browser = self._playwright = None

        if any((page, context, browser, playwright)):
            logger.info("[RENDERER] Stopping browser")
        for name, closer in (
            ("page", page.close if page else None),
            ("context", context.close if context else None),
            ("browser", browser.close if browser else None),
            ("playwright", playwright.stop if playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.warning(f"[RENDERER] Error closing {name}: {e}")

        if self._handle:
            self._handle.mark_stopped()
            self._handle = None
        self._remove_snapshot()

    def _remove_snapshot(self) -> None:
        path = self._snapshot_written
        self._snapshot_written = None
        if not path:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[RENDERER] Could not remove {path}: {e}")
