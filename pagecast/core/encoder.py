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

"""FFmpeg encoder process for Pagecast.

This module wraps the long-running ffmpeg process that grabs the display
surface, muxes it with the audio plan and pushes FLV to the RTMP
destination:
- x11grab capture from the virtual display (avfoundation on macOS)
- Silence, a looped file, or a looped ffconcat playlist as audio
- Constant frame rate x264 tuned for live ingest
- stderr passthrough as diagnostic log lines
- Exactly one exit notification per process

The encoder never restarts itself; restarting is the supervisor's job.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import tempfile
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from pagecast.config import RunConfiguration
from pagecast.core.assets import AudioPlan, AudioPlanKind
from pagecast.core.process import new_tail, pump_lines, terminate_process
from pagecast.core.session import SessionHandle
from pagecast.exceptions import EncoderError
from pagecast.utils.logger import logger, mask, redact

ExitCallback = Callable[[Optional[int], Optional[str]], None]
LineCallback = Callable[[str], None]


@dataclass(frozen=True)
class EncoderSettings:
    """Encoding parameters for the outbound stream.

    Attributes:
        frame_rate: Capture and output frames per second
        preset: x264 preset
        tune: x264 tune
        video_bitrate: Target video bitrate
        min_rate: Minimum video bitrate
        max_rate: Maximum video bitrate
        buffer_size: Rate control buffer size
        keyframe_interval: Seconds between forced keyframes
        audio_bitrate: AAC bitrate
        audio_rate: Audio sample rate
        threads: Encoder threads
    """

    frame_rate: int = 30
    preset: str = "ultrafast"
    tune: str = "zerolatency"
    video_bitrate: str = "6000k"
    min_rate: str = "3000k"
    max_rate: str = "6000k"
    buffer_size: str = "12000k"
    pixel_format: str = "yuv420p"
    keyframe_interval: int = 2
    audio_bitrate: str = "128k"
    audio_rate: int = 44100
    threads: int = 4

    @property
    def gop(self) -> int:
        return self.frame_rate * self.keyframe_interval


def _video_input(
    config: RunConfiguration,
    settings: EncoderSettings,
    display_name: Optional[str],
) -> List[str]:
    if display_name is None:
        # avfoundation device "1" is the first screen
        return [
            "-f", "avfoundation",
            "-capture_cursor", "1",
            "-framerate", str(settings.frame_rate),
            "-i", "1:none",
        ]
    return [
        "-f", "x11grab",
        "-thread_queue_size", "512",
        "-framerate", str(settings.frame_rate),
        "-video_size", config.resolution.as_size(),
        "-draw_mouse", "0",
        "-i", f"{display_name}.0",
    ]


def _audio_input(
    plan: AudioPlan,
    settings: EncoderSettings,
    playlist_path: Optional[str],
) -> List[str]:
    if plan.kind == AudioPlanKind.SINGLE:
        return ["-stream_loop", "-1", "-re", "-i", plan.sources[0]]
    if plan.kind == AudioPlanKind.PLAYLIST:
        if not playlist_path:
            raise EncoderError("A playlist audio plan needs a playlist descriptor")
        return [
            "-stream_loop", "-1", "-re",
            "-f", "concat", "-safe", "0",
            "-i", playlist_path,
        ]
    return ["-f", "lavfi", "-i", f"anullsrc=r={settings.audio_rate}:cl=stereo"]


def build_command(
    ffmpeg_path: str,
    config: RunConfiguration,
    settings: EncoderSettings,
    plan: AudioPlan,
    display_name: Optional[str],
    destination: str,
    playlist_path: Optional[str] = None,
) -> List[str]:
    """Build the ffmpeg argument list for one encoding session."""
    cmd = [ffmpeg_path, "-hide_banner", "-loglevel", "info"]
    cmd += _video_input(config, settings, display_name)
    cmd += _audio_input(plan, settings, playlist_path)
    cmd += [
        "-map", "0:v:0",
        "-map", "1:a:0",
        # Video encoding
        "-c:v", "libx264",
        "-preset", settings.preset,
        "-tune", settings.tune,
        "-b:v", settings.video_bitrate,
        "-minrate", settings.min_rate,
        "-maxrate", settings.max_rate,
        "-bufsize", settings.buffer_size,
        "-pix_fmt", settings.pixel_format,
        "-g", str(settings.gop),
        "-keyint_min", str(settings.gop),
        "-force_key_frames", f"expr:gte(t,n_forced*{settings.keyframe_interval})",
        "-sc_threshold", "0",
        "-fps_mode", "cfr",
        # Audio encoding
        "-c:a", "aac",
        "-b:a", settings.audio_bitrate,
        "-ar", str(settings.audio_rate),
        # Output
        "-threads", str(settings.threads),
        "-f", "flv",
        "-flvflags", "no_duration_filesize",
        destination,
    ]
    return cmd


def write_playlist(paths: List[str], directory: Optional[str] = None) -> str:
    """Write an ffconcat descriptor listing ``paths`` and return its path."""
    fd, path = tempfile.mkstemp(prefix="pagecast-playlist-", suffix=".txt", dir=directory)
    with os.fdopen(fd, "w") as f:
        f.write("ffconcat version 1.0\n")
        for item in paths:
            escaped = os.path.abspath(item).replace("'", "'\\''")
            f.write(f"file '{escaped}'\n")
    return path


def describe_exit(returncode: int) -> Tuple[Optional[int], Optional[str]]:
    """Split an asyncio return code into (exit code, signal name)."""
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, f"signal {-returncode}"
    return returncode, None


class EncoderProcess:
    """
    Wraps one ffmpeg capture-and-transport process.

    Example:
        >>> encoder = EncoderProcess(config, on_exit=lambda code, sig: ...)
        >>> await encoder.start(":99", AudioPlan.disabled(), config.destination)
        >>> await encoder.stop()
    """

    def __init__(
        self,
        config: RunConfiguration,
        settings: Optional[EncoderSettings] = None,
        on_exit: Optional[ExitCallback] = None,
        on_line: Optional[LineCallback] = None,
        ffmpeg_path: Optional[str] = None,
        stop_timeout: float = 5.0,
    ) -> None:
        self.config = config
        self.settings = settings or EncoderSettings()
        self.ffmpeg_path = ffmpeg_path
        self.stop_timeout = stop_timeout
        self._on_exit = on_exit
        self._on_line = on_line
        self._process: Optional[asyncio.subprocess.Process] = None
        self._handle: Optional[SessionHandle] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None
        self._stderr_tail = new_tail()
        self._playlist_path: Optional[str] = None
        self._stopping = False

    def set_exit_callback(self, callback: Optional[ExitCallback]) -> None:
        self._on_exit = callback

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def last_output(self) -> List[str]:
        """The most recent ffmpeg diagnostic lines."""
        return list(self._stderr_tail)

    def _resolve_ffmpeg(self) -> str:
        ffmpeg = self.ffmpeg_path or shutil.which("ffmpeg")
        if not ffmpeg:
            raise EncoderError("ffmpeg not found in PATH. Please install ffmpeg.")
        return ffmpeg

    async def start(
        self,
        display_name: Optional[str],
        plan: AudioPlan,
        destination: str,
    ) -> SessionHandle:
        """
        Launch ffmpeg.

        Args:
            display_name: X display to grab, None for the native screen
            plan: Audio plan for this session
            destination: RTMP URL to push to

        Returns:
            Handle of the launched process

        Raises:
            EncoderError: If ffmpeg cannot be launched
        """
        if self._process is not None:
            raise EncoderError("Encoder already started; stop it first")

        ffmpeg = self._resolve_ffmpeg()
        redact(self.config.stream_key)
        await self._log_version(ffmpeg)

        self._stopping = False
        self._stderr_tail.clear()
        if plan.kind == AudioPlanKind.PLAYLIST:
            self._playlist_path = write_playlist(list(plan.sources))

        cmd = build_command(
            ffmpeg, self.config, self.settings, plan, display_name,
            destination, self._playlist_path,
        )
        logger.info(f"[ENCODER] Starting FFmpeg with args: {self._redact(' '.join(cmd))}")

        try:
            self._process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._remove_playlist()
            raise EncoderError(f"Failed to start FFmpeg: {e}") from e

        self._handle = SessionHandle(kind="encoder", pid=self._process.pid)
        self._handle.mark_alive()
        self._stderr_task = asyncio.create_task(
            pump_lines(self._process.stderr, self._handle_line, self._stderr_tail)
        )
        self._exit_task = asyncio.create_task(self._watch_exit(self._process))
        logger.info(f"[ENCODER] FFmpeg started (pid {self._process.pid})")
        return self._handle

    async def _log_version(self, ffmpeg: str) -> None:
        try:
            probe = await asyncio.create_subprocess_exec(
                ffmpeg, "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
            out, _ = await asyncio.wait_for(probe.communicate(), timeout=10.0)
            first = out.decode("utf-8", errors="replace").split("\n", 1)[0]
            logger.info(f"[ENCODER] FFmpeg version info: {first}")
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"[ENCODER] Could not probe FFmpeg version: {e}")

    def _redact(self, text: str) -> str:
        key = self.config.stream_key
        return text.replace(key, mask(key)) if key else text

    def _handle_line(self, line: str) -> None:
        if "error" in line.lower():
            logger.error(f"[ENCODER] FFmpeg: {line}")
        elif line.startswith("frame=") or line.startswith("size="):
            logger.debug(f"[ENCODER] FFmpeg: {line}")
        else:
            logger.info(f"[ENCODER] FFmpeg: {line}")
        if self._on_line:
            self._on_line(line)

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if self._stderr_task:
            try:
                await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=2.0)
            except asyncio.TimeoutError:
                pass
            except Exception as e:
                logger.warning(f"[ENCODER] FFmpeg output reader failed: {e}")
        code, sig = describe_exit(returncode)
        logger.info(f"[ENCODER] FFmpeg process exited with code {code} and signal {sig}")
        if self._handle:
            if code == 0:
                self._handle.mark_stopped()
            else:
                self._handle.mark_failed()
        if self._stopping:
            return
        if self._on_exit:
            self._on_exit(code, sig)

    async def stop(self) -> None:
        """Stop ffmpeg. Safe to call repeatedly or before start()."""
        process = self._process
        if process is None:
            self._remove_playlist()
            return
        self._stopping = True
        self._process = None
        if self._handle:
            self._handle.mark_stopping()

        if process.returncode is None:
            logger.info("[ENCODER] Stopping FFmpeg...")
            try:
                if process.stdin:
                    process.stdin.write(b"q\n")
                    await process.stdin.drain()
                    process.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
            except asyncio.TimeoutError:
                logger.warning("[ENCODER] FFmpeg did not exit gracefully, terminating...")
                await terminate_process(process, "FFmpeg", timeout=self.stop_timeout)

        for task in (self._exit_task, self._stderr_task):
            if task is None:
                continue
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"[ENCODER] FFmpeg task ended with an error: {e}")
        self._exit_task = None
        self._stderr_task = None
        if self._handle:
            self._handle.mark_stopped()
        self._remove_playlist()

    def _remove_playlist(self) -> None:
        path = self._playlist_path
        self._playlist_path = None
        if not path:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"[ENCODER] Could not remove {path}: {e}")
