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
Rendering health monitor for Pagecast.

While the broadcast is streaming, the monitor periodically fingerprints
the rendered page and compares it with the previous sample. A page that
shows no visible change for ``stale_threshold`` consecutive samples is
reloaded in place. Reloads do not touch the encoder and do not count as
failures.

If the page is reloaded ``max_consecutive_reloads`` times without a
single visible change in between, or a reload fails, the monitor reports
a failure and the supervisor runs a full recovery cycle.

Fingerprints are lossy, so a legitimately static page will be reloaded
periodically. The period and threshold are tuning parameters.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from pagecast.exceptions import RendererError
from pagecast.utils.logger import logger


class HealthAction(str, Enum):
    """What the monitor should do after a sample."""
    NONE = "none"
    RELOAD = "reload"


@dataclass(frozen=True)
class HealthSample:
    """Most recent fingerprint and how many samples in a row matched it."""

    fingerprint: Optional[bytes] = None
    unchanged: int = 0


class StalenessDetector:
    """
    Turns a stream of fingerprints into reload decisions.

    Attributes:
        threshold: Consecutive unchanged samples that trigger a reload
        sample: Latest HealthSample
        reload_streak: Reloads issued since the last visible change
    """

    def __init__(self, threshold: int = 2) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.threshold = threshold
        self.sample = HealthSample()
        self.reload_streak = 0

    def observe(self, fingerprint: bytes) -> HealthAction:
        previous = self.sample.fingerprint
        if previous is not None and fingerprint == previous:
            self.sample = HealthSample(fingerprint, self.sample.unchanged + 1)
        else:
            self.sample = HealthSample(fingerprint, 0)
            if previous is not None:
                self.reload_streak = 0

        if self.sample.unchanged >= self.threshold:
            self.sample = HealthSample(fingerprint, 0)
            self.reload_streak += 1
            return HealthAction.RELOAD
        return HealthAction.NONE

    def reset(self) -> None:
        self.sample = HealthSample()
        self.reload_streak = 0


class HealthMonitor:
    """
    Periodic staleness check against a render host.

    Example:
        >>> monitor = HealthMonitor(host, period=60.0, on_failure=supervisor.fail)
        >>> monitor.start()
        >>> ...
        >>> await monitor.stop()
    """

    def __init__(
        self,
        host,
        period: float = 60.0,
        threshold: int = 2,
        max_consecutive_reloads: int = 2,
        on_failure: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.host = host
        self.period = period
        self.max_consecutive_reloads = max_consecutive_reloads
        self.detector = StalenessDetector(threshold)
        self.reloads_issued = 0
        self._on_failure = on_failure
        self._task: Optional[asyncio.Task] = None
        self._failed = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self.detector.reset()
        self._failed = False
        self._task = asyncio.create_task(self._run())
        logger.info(f"[HEALTH] Monitor started (every {self.period:.0f}s)")

    def cancel(self) -> None:
        """Cancel the periodic task without waiting for it."""
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def stop(self) -> None:
        """Cancel the periodic task and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            try:
                await self.tick()
            except Exception as e:
                self._fail(f"Health check crashed: {e}")
            if self._failed:
                return

    async def tick(self) -> HealthAction:
        """Take one sample and act on it."""
        try:
            fingerprint = await self.host.capture_fingerprint()
        except RendererError as e:
            self._fail(f"Health sample failed: {e}")
            return HealthAction.NONE

        action = self.detector.observe(fingerprint)
        if action == HealthAction.NONE:
            logger.debug(
                f"[HEALTH] Sample ok (unchanged={self.detector.sample.unchanged})"
            )
            return action

        self.reloads_issued += 1
        logger.warning(
            f"[HEALTH] No visual change for {self.detector.threshold} samples, "
            f"forcing reload ({self.detector.reload_streak}/{self.max_consecutive_reloads})"
        )
        if not await self.host.force_reload():
            self._fail("Forced reload failed")
        elif self.detector.reload_streak >= self.max_consecutive_reloads:
            self._fail(
                f"Page still stale after {self.detector.reload_streak} forced reloads"
            )
        return action

    def _fail(self, reason: str) -> None:
        logger.error(f"[HEALTH] {reason}")
        self._failed = True
        if self._on_failure:
            self._on_failure(reason)
