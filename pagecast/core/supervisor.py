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
Broadcast supervisor for Pagecast.

The Supervisor owns the lifecycle state machine of a broadcast:

    IDLE -> DISPLAY_STARTING -> RENDERER_STARTING -> STREAMING
                  ^                                     |
                  |                                     v
                  +------------------------------- RECOVERING -> TERMINATED

Every component reports problems by posting a Signal; the supervisor's
single control loop consumes them. Only the first signal of a cycle is
acted on; anything else posted by that cycle is discarded once the next
cycle begins, so recovery never re-enters itself.

Retry policy:
- Startup and runtime failures count against ``max_retries``
- Scheduled rotation runs the same recovery cycle without counting
- A fully successful start sequence resets the counter
- Running out of retries ends in TERMINATED (exit code 1)

Operator shutdown and a clean encoder exit tear everything down the same
way and end in SHUT_DOWN (exit code 0).
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple

from pagecast.config import RunConfiguration
from pagecast.core.assets import AssetProvider, AudioPlan
from pagecast.core.display import DisplayProvider, create_display
from pagecast.core.encoder import EncoderProcess
from pagecast.core.health import HealthMonitor
from pagecast.core.renderer import RenderHost
from pagecast.exceptions import RetryExhaustedError, StartupTimeoutError
from pagecast.utils.logger import logger

EXIT_OK = 0
EXIT_RETRIES_EXHAUSTED = 1


class SupervisorState(str, Enum):
    """Lifecycle state of the broadcast."""
    IDLE = "idle"
    DISPLAY_STARTING = "display_starting"
    RENDERER_STARTING = "renderer_starting"
    STREAMING = "streaming"
    RECOVERING = "recovering"
    TERMINATED = "terminated"
    SHUT_DOWN = "shut_down"


class SignalKind(str, Enum):
    """Reason the supervisor leaves the current cycle."""
    FAILURE = "failure"
    ROTATION = "rotation"
    SHUTDOWN = "shutdown"
    ENCODER_FINISHED = "encoder_finished"


@dataclass(frozen=True)
class Signal:
    """A request for the supervisor's control loop.

    ``generation`` ties the signal to the cycle that produced it; shutdown
    requests carry None and apply to whatever cycle is current.
    """

    kind: SignalKind
    reason: str = ""
    generation: Optional[int] = None


@dataclass
class RetryCounter:
    """Failure counter bounded by ``limit``."""

    limit: int
    value: int = 0

    @property
    def exhausted(self) -> bool:
        return self.value >= self.limit

    def increment(self) -> int:
        if self.exhausted:
            raise RetryExhaustedError(f"Retry limit of {self.limit} reached")
        self.value += 1
        return self.value

    def reset(self) -> None:
        self.value = 0


class Supervisor:
    """
    Runs and heals one broadcast.

    Attributes:
        config: Shared run configuration
        display: Display provider
        renderer: Render host
        encoder: Encoder process wrapper
        assets: Audio asset provider
        retries: Failure counter
        transitions: Every (from, to) state change, oldest first

    Example:
        >>> supervisor = Supervisor(config)
        >>> loop.add_signal_handler(signal.SIGTERM, supervisor.request_shutdown)
        >>> exit_code = await supervisor.run()
    """

    def __init__(
        self,
        config: RunConfiguration,
        display: Optional[DisplayProvider] = None,
        renderer: Optional[RenderHost] = None,
        encoder: Optional[EncoderProcess] = None,
        assets: Optional[AssetProvider] = None,
    ) -> None:
        self.config = config
        self.display = display or create_display(config)
        self.renderer = renderer or RenderHost(config)
        self.encoder = encoder or EncoderProcess(config)
        self.assets = assets or AssetProvider(
            config.audio_sources, download_timeout=config.asset_timeout
        )
        self.monitor: Optional[HealthMonitor] = None
        self.retries = RetryCounter(config.max_retries)
        self.state = SupervisorState.IDLE
        self.transitions: List[Tuple[SupervisorState, SupervisorState]] = []
        self.rotations = 0
        self._generation = 0
        self._signals: "asyncio.Queue[Signal]" = asyncio.Queue()
        self._rotation_timer: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def post(self, signal: Signal) -> None:
        """Queue a signal for the control loop."""
        self._signals.put_nowait(signal)

    def request_shutdown(self, reason: str = "operator request") -> None:
        """Ask the control loop to tear down and exit with code 0."""
        logger.info(f"[SUPERVISOR] Shutdown requested ({reason})")
        self.post(Signal(SignalKind.SHUTDOWN, reason))

    def _poster(self, kind: SignalKind, source: str) -> Callable[[str], None]:
        generation = self._generation

        def post(reason: str) -> None:
            self.post(Signal(kind, f"{source}: {reason}", generation))

        return post

    def _on_encoder_exit(self, code: Optional[int], sig: Optional[str]) -> None:
        generation = self._generation
        if code == 0:
            self.post(Signal(SignalKind.ENCODER_FINISHED, "encoder exited cleanly", generation))
        else:
            self.post(Signal(
                SignalKind.FAILURE,
                f"encoder exited with code {code} and signal {sig}",
                generation,
            ))

    async def _next_signal(self, generation: Optional[int]) -> Signal:
        """Wait for a shutdown or for a signal of ``generation``."""
        while True:
            signal = await self._signals.get()
            if signal.kind == SignalKind.SHUTDOWN:
                return signal
            if generation is not None and signal.generation == generation:
                return signal
            logger.debug(f"[SUPERVISOR] Ignoring stale signal: {signal.reason}")

    # ------------------------------------------------------------------
    # Control loop
    # ------------------------------------------------------------------

    def _transition(self, state: SupervisorState) -> None:
        previous = self.state
        self.state = state
        self.transitions.append((previous, state))
        logger.info(f"[SUPERVISOR] {previous.value} -> {state.value}")

    async def run(self) -> int:
        """
        Run the broadcast until shutdown or retry exhaustion.

        Returns:
            Process exit code: 0 on shutdown, 1 when retries are exhausted
        """
        try:
            while True:
                signal = await self._run_cycle()
                exit_code = await self._recover(signal)
                if exit_code is not None:
                    return exit_code
        finally:
            await self._teardown()

    async def _run_cycle(self) -> Signal:
        """Start every component in order and wait for the cycle to end."""
        self._generation += 1
        generation = self._generation
        config = self.config

        self._transition(SupervisorState.DISPLAY_STARTING)
        signal = await self._step(
            "display", self.display.start(config.resolution), generation
        )
        if signal:
            return signal

        self._transition(SupervisorState.RENDERER_STARTING)
        self.renderer.set_failure_callback(self._poster(SignalKind.FAILURE, "renderer"))
        signal = await self._step(
            "renderer",
            self.renderer.start(
                config.url,
                config.resolution,
                config.audio_enabled,
                display_name=self.display.display_name,
            ),
            generation,
        )
        if signal:
            return signal

        self._transition(SupervisorState.STREAMING)
        plan_box = []

        async def prepare_audio() -> None:
            plan_box.append(await self._prepare_audio())

        signal = await self._step("assets", prepare_audio(), generation)
        if signal:
            return signal

        self.encoder.set_exit_callback(self._on_encoder_exit)
        signal = await self._step(
            "encoder",
            self.encoder.start(self.display.display_name, plan_box[0], config.destination),
            generation,
        )
        if signal:
            return signal

        self.retries.reset()
        self.monitor = HealthMonitor(
            self.renderer,
            period=config.health_period,
            threshold=config.stale_threshold,
            max_consecutive_reloads=config.max_consecutive_reloads,
            on_failure=self._poster(SignalKind.FAILURE, "health"),
        )
        self.monitor.start()
        self._schedule_rotation(generation)
        logger.info("[SUPERVISOR] Streaming")

        return await self._next_signal(generation)

    async def _step(
        self,
        name: str,
        coro: Awaitable[None],
        generation: int,
    ) -> Optional[Signal]:
        """
        Run one startup step, racing it against incoming signals.

        Returns:
            None if the step completed, otherwise the Signal ending the cycle
        """
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._next_signal(generation))
        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=self.config.startup_timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )

        if waiter in done:
            await _cancel(task)
            return waiter.result()
        await _cancel(waiter)

        if task not in done:
            await _cancel(task)
            timeout_error = StartupTimeoutError(
                f"{name} did not become ready within {self.config.startup_timeout:.0f}s"
            )
            logger.error(f"[SUPERVISOR] {timeout_error}")
            return Signal(SignalKind.FAILURE, str(timeout_error), generation)
        error = task.exception()
        if error is not None:
            logger.error(f"[SUPERVISOR] {name} failed to start: {error}")
            return Signal(SignalKind.FAILURE, f"{name}: {error}", generation)
        return None

    async def _prepare_audio(self) -> AudioPlan:
        """Resolve the audio plan, falling back to silence on any problem."""
        try:
            return await asyncio.wait_for(
                self.assets.prepare(self.config.audio_enabled),
                timeout=self.config.asset_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[SUPERVISOR] Audio not ready within {self.config.asset_timeout:.0f}s, "
                "streaming silence"
            )
        except Exception as e:
            logger.warning(f"[SUPERVISOR] Audio preparation failed, streaming silence: {e}")
        return AudioPlan.disabled()

    def _schedule_rotation(self, generation: int) -> None:
        interval = self.config.rotation_interval
        if not interval:
            return
        signal = Signal(SignalKind.ROTATION, "scheduled rotation", generation)
        self._rotation_timer = asyncio.get_running_loop().call_later(
            interval, self.post, signal
        )
        logger.info(f"[SUPERVISOR] Next rotation in {interval:.0f}s")

    async def _recover(self, signal: Signal) -> Optional[int]:
        """
        Tear down after ``signal`` and decide what happens next.

        Returns:
            An exit code if the supervisor is done, None to start a new cycle
        """
        if signal.kind in (SignalKind.SHUTDOWN, SignalKind.ENCODER_FINISHED):
            logger.info(f"[SUPERVISOR] Stopping: {signal.reason}")
            await self._teardown()
            self._transition(SupervisorState.SHUT_DOWN)
            return EXIT_OK

        self._transition(SupervisorState.RECOVERING)
        await self._teardown()

        if signal.kind == SignalKind.ROTATION:
            self.rotations += 1
            logger.info(
                f"[SUPERVISOR] Rotation #{self.rotations}, restarting in "
                f"{self.config.retry_delay:.1f} seconds..."
            )
        else:
            logger.error(f"[SUPERVISOR] Failure: {signal.reason}")
            if self.retries.exhausted:
                logger.error("[SUPERVISOR] Max retries reached, exiting...")
                self._transition(SupervisorState.TERMINATED)
                return EXIT_RETRIES_EXHAUSTED
            attempt = self.retries.increment()
            logger.info(
                f"[SUPERVISOR] Retrying ({attempt}/{self.retries.limit}) in "
                f"{self.config.retry_delay:.1f} seconds..."
            )

        try:
            signal = await asyncio.wait_for(
                self._next_signal(None), timeout=self.config.retry_delay
            )
        except asyncio.TimeoutError:
            return None
        logger.info(f"[SUPERVISOR] Stopping: {signal.reason}")
        self._transition(SupervisorState.SHUT_DOWN)
        return EXIT_OK

    async def _teardown(self) -> None:
        """Stop everything that might be running, newest component first.

        Every step is attempted even if an earlier one fails.
        """
        if self._rotation_timer is not None:
            self._rotation_timer.cancel()
            self._rotation_timer = None
        monitor, self.monitor = self.monitor, None
        if monitor is not None:
            monitor.cancel()

        steps = [
            ("health monitor", monitor.stop if monitor else None),
            ("encoder", self.encoder.stop),
            ("renderer", self.renderer.stop),
            ("assets", self.assets.cleanup),
            ("display", self.display.stop),
        ]
        for name, stop in steps:
            if stop is None:
                continue
            try:
                result = stop()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[SUPERVISOR] Error stopping {name}: {e}")


async def _cancel(task: "asyncio.Future") -> None:
    if task.done():
        if not task.cancelled():
            task.exception()
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"[SUPERVISOR] Cancelled step raised: {e}")
