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
Display providers for Pagecast.

The display provider brings up the surface the browser draws into and
the encoder captures from. On hosts with a native compositor nothing has
to be started; elsewhere an Xvfb virtual display is launched.

Readiness of the virtual display is never assumed from elapsed time: the
provider polls until both the Xvfb process is still alive and its lock
marker exists, and reports failure otherwise.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from typing import List, Optional

import psutil

from pagecast.config import Resolution, RunConfiguration
from pagecast.core.process import new_tail, pump_lines, terminate_process
from pagecast.core.session import SessionHandle
from pagecast.exceptions import DisplayError
from pagecast.utils.logger import logger


class DisplayProvider:
    """Base class for rendering surfaces.

    Subclasses implement start() and stop(); stop() must be idempotent
    and must not raise when the surface already went away.
    """

    display_name: Optional[str] = None

    async def start(self, resolution: Resolution) -> None:
        raise NotImplementedError

    async def stop(self) -> None:
        raise NotImplementedError

    @property
    def is_running(self) -> bool:
        raise NotImplementedError


class NativeDisplay(DisplayProvider):
    """The host's own display. Always ready, nothing to tear down."""

    def __init__(self) -> None:
        self._started = False

    async def start(self, resolution: Resolution) -> None:
        logger.info("[DISPLAY] Using native display")
        self._started = True

    async def stop(self) -> None:
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started


class VirtualDisplay(DisplayProvider):
    """
    Xvfb-backed virtual display.

    Attributes:
        display_number: X display number (":99" by default)
        timeout: Seconds to wait for the display to confirm readiness
        display_name: X display name passed to the browser and encoder

    Example:
        >>> display = VirtualDisplay(display_number=99)
        >>> await display.start(Resolution(1280, 720))
        >>> display.display_name
        ':99'
        >>> await display.stop()
    """

    def __init__(
        self,
        display_number: int = 99,
        timeout: float = 2.0,
        xvfb_path: Optional[str] = None,
        poll_interval: float = 0.1,
        stop_timeout: float = 5.0,
        tmp_dir: str = "/tmp",
    ) -> None:
        self.display_number = display_number
        self.display_name = f":{display_number}"
        self.timeout = timeout
        self.xvfb_path = xvfb_path
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout
        self.lock_path = os.path.join(tmp_dir, f".X{display_number}-lock")
        self.socket_path = os.path.join(tmp_dir, ".X11-unix", f"X{display_number}")
        self._process: Optional[asyncio.subprocess.Process] = None
        self._handle: Optional[SessionHandle] = None
        self._output_task: Optional[asyncio.Task] = None
        self._output_tail = new_tail()

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self, resolution: Resolution) -> None:
        """
        Launch Xvfb and wait until it is usable.

        Raises:
            DisplayError: If Xvfb cannot be launched, exits early, or never
                creates its lock marker within the timeout
        """
        if self._process is not None:
            raise DisplayError("Virtual display already started; stop it first")

        logger.info(f"[DISPLAY] Setting up virtual display {self.display_name}...")
        await asyncio.get_running_loop().run_in_executor(None, self._clear_stale_instance)

        xvfb = self.xvfb_path or shutil.which("Xvfb")
        if not xvfb:
            raise DisplayError("Xvfb not found in PATH. Please install xvfb.")

        cmd = self._build_command(xvfb, resolution)
        logger.info(f"[DISPLAY] Starting Xvfb: {' '.join(cmd)}")
        self._output_tail.clear()
        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise DisplayError(f"Failed to start Xvfb: {e}") from e

        self._handle = SessionHandle(kind="display", pid=self._process.pid)
        self._output_task = asyncio.create_task(
            pump_lines(self._process.stdout, self._log_output, self._output_tail)
        )

        try:
            await self._wait_until_ready()
        except DisplayError:
            await self.stop()
            raise

    def _build_command(self, xvfb: str, resolution: Resolution) -> List[str]:
        return [
            xvfb,
            self.display_name,
            "-screen", "0", f"{resolution.as_size()}x24",
            "-ac",
            "-nolisten", "tcp",
        ]

    async def _wait_until_ready(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            if self._process.returncode is not None:
                self._handle.mark_failed()
                raise DisplayError(
                    f"Xvfb exited with code {self._process.returncode}: "
                    f"{' | '.join(self._output_tail)}"
                )
            if self._marker_present():
                self._handle.mark_alive()
                logger.info(f"[DISPLAY] Xvfb started successfully on {self.display_name}")
                return
            if loop.time() >= deadline:
                self._handle.mark_failed()
                raise DisplayError(
                    f"Xvfb did not become ready within {self.timeout:.1f}s "
                    f"(no lock marker at {self.lock_path})"
                )
            await asyncio.sleep(self.poll_interval)

    def _marker_present(self) -> bool:
        return os.path.exists(self.lock_path) or os.path.exists(self.socket_path)

    def _log_output(self, line: str) -> None:
        logger.debug(f"[DISPLAY] Xvfb: {line}")

    def _clear_stale_instance(self) -> None:
        """Best-effort kill of an Xvfb left over from a crashed run."""
        stale = []
        for proc in psutil.process_iter(["name", "cmdline"]):
            try:
                name = proc.info.get("name") or ""
                cmdline = proc.info.get("cmdline") or []
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if name == "Xvfb" and self.display_name in cmdline:
                stale.append(proc)

        for proc in stale:
            logger.warning(f"[DISPLAY] Terminating stale Xvfb (pid {proc.pid})")
            try:
                proc.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        if stale:
            _, alive = psutil.wait_procs(stale, timeout=1.0)
            for proc in alive:
                try:
                    proc.kill()
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    pass

        self._remove_lock_artifacts()

    def _remove_lock_artifacts(self) -> None:
        for path in (self.lock_path, self.socket_path):
            try:
                os.remove(path)
                logger.debug(f"[DISPLAY] Removed stale {path}")
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"[DISPLAY] Could not remove {path}: {e}")

    async def stop(self) -> None:
        """Stop Xvfb. Safe to call repeatedly or before start()."""
        process = self._process
        if process is None:
            return
        self._process = None
        if self._handle:
            self._handle.mark_stopping()

        code = await terminate_process(process, "Xvfb", timeout=self.stop_timeout)
        logger.info(f"[DISPLAY] Xvfb stopped (exit code {code})")

        if self._output_task:
            self._output_task.cancel()
            try:
                await self._output_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"[DISPLAY] Xvfb output reader failed: {e}")
            self._output_task = None
        if self._handle:
            self._handle.mark_stopped()
        await asyncio.get_running_loop().run_in_executor(None, self._remove_lock_artifacts)


def create_display(config: RunConfiguration) -> DisplayProvider:
    """Pick the display provider matching the configured platform flag."""
    if not config.use_virtual_display:
        return NativeDisplay()
    return VirtualDisplay(
        display_number=config.display_number,
        timeout=config.display_timeout,
    )
