# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for display providers."""

import os
import sys
from unittest.mock import patch

import pytest

from pagecast.config import Resolution
from pagecast.core.display import NativeDisplay, VirtualDisplay, create_display
from pagecast.exceptions import DisplayError

SLEEPER = [sys.executable, "-c", "import time; time.sleep(30)"]


def make_display(tmp_path, **kwargs):
    (tmp_path / ".X11-unix").mkdir(exist_ok=True)
    display = VirtualDisplay(
        display_number=42, tmp_dir=str(tmp_path), stop_timeout=1.0, **kwargs
    )
    display._clear_stale_instance = lambda: None
    return display


class TestCreateDisplay:
    """Tests for create_display()."""

    def test_native(self, make_config):
        assert isinstance(create_display(make_config(use_virtual_display=False)), NativeDisplay)

    def test_virtual(self, make_config):
        display = create_display(make_config(display_number=7, display_timeout=3.0))
        assert isinstance(display, VirtualDisplay)
        assert display.display_name == ":7"
        assert display.timeout == 3.0


class TestNativeDisplay:
    """Tests for NativeDisplay."""

    @pytest.mark.asyncio
    async def test_ready_immediately(self):
        display = NativeDisplay()
        await display.start(Resolution())
        assert display.is_running is True
        assert display.display_name is None
        await display.stop()
        await display.stop()
        assert display.is_running is False


class TestVirtualDisplay:
    """Tests for VirtualDisplay."""

    def test_command(self, tmp_path):
        display = make_display(tmp_path)
        cmd = display._build_command("Xvfb", Resolution(1920, 1080))
        assert cmd == [
            "Xvfb", ":42", "-screen", "0", "1920x1080x24", "-ac", "-nolisten", "tcp",
        ]

    @pytest.mark.asyncio
    async def test_stop_before_start(self, tmp_path):
        display = make_display(tmp_path)
        await display.stop()
        await display.stop()
        assert display.is_running is False

    @pytest.mark.asyncio
    async def test_missing_xvfb(self, tmp_path):
        display = make_display(tmp_path)
        with patch("pagecast.core.display.shutil.which", return_value=None):
            with pytest.raises(DisplayError, match="not found"):
                await display.start(Resolution())

    @pytest.mark.asyncio
    async def test_ready_when_alive_and_marker_present(self, tmp_path):
        display = make_display(tmp_path, xvfb_path=sys.executable)
        open(display.lock_path, "w").close()

        with patch.object(VirtualDisplay, "_build_command", return_value=SLEEPER):
            await display.start(Resolution())

        assert display.is_running is True
        await display.stop()
        assert display.is_running is False
        assert not os.path.exists(display.lock_path)
        await display.stop()

    @pytest.mark.asyncio
    async def test_missing_marker_is_failure(self, tmp_path):
        display = make_display(tmp_path, xvfb_path=sys.executable, timeout=0.2)

        with patch.object(VirtualDisplay, "_build_command", return_value=SLEEPER):
            with pytest.raises(DisplayError, match="did not become ready"):
                await display.start(Resolution())

        assert display.is_running is False

    @pytest.mark.asyncio
    async def test_early_exit_is_failure(self, tmp_path):
        display = make_display(tmp_path, xvfb_path=sys.executable, timeout=5.0)
        crash = [sys.executable, "-c", "import sys; print('cannot open display'); sys.exit(1)"]

        with patch.object(VirtualDisplay, "_build_command", return_value=crash):
            with pytest.raises(DisplayError, match="exited with code 1"):
                await display.start(Resolution())

        assert display.is_running is False

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, tmp_path):
        display = make_display(tmp_path, xvfb_path=sys.executable)
        open(display.lock_path, "w").close()

        with patch.object(VirtualDisplay, "_build_command", return_value=SLEEPER):
            await display.start(Resolution())
            with pytest.raises(DisplayError, match="already started"):
                await display.start(Resolution())
        await display.stop()

    def test_clears_stale_lock_files(self, tmp_path):
        display = VirtualDisplay(display_number=42, tmp_dir=str(tmp_path))
        (tmp_path / ".X11-unix").mkdir()
        open(display.lock_path, "w").close()
        open(display.socket_path, "w").close()

        with patch("pagecast.core.display.psutil.process_iter", return_value=[]):
            display._clear_stale_instance()

        assert not os.path.exists(display.lock_path)
        assert not os.path.exists(display.socket_path)
