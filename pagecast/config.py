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
Run configuration for Pagecast.

This module provides the immutable RunConfiguration shared read-only by
every component of a broadcast. Values are resolved once at startup with
the precedence:

    explicit value  >  environment override  >  built-in default

Environment overrides use the ``PAGECAST_*`` names. The legacy names
``WEBSITE_URL``, ``YOUTUBE_STREAM_KEY``, ``RESOLUTION_WIDTH``,
``RESOLUTION_HEIGHT``, ``RETRY_DELAY`` (milliseconds) and ``MAX_RETRIES``
are honoured as well.

Example:
    >>> config = RunConfiguration.from_sources(
    ...     url="https://example.com/dashboard",
    ...     stream_key="abcd-efgh",
    ... )
    >>> config.destination
    'rtmp://a.rtmp.youtube.com/live2/abcd-efgh'
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pagecast.exceptions import ConfigurationError

DEFAULT_URL = "https://cryptotick.live/bitcoin?pm=true"
DEFAULT_INGEST_URL = "rtmp://a.rtmp.youtube.com/live2"
DEFAULT_ROTATION_INTERVAL = 6 * 60 * 60.0


@dataclass(frozen=True)
class Resolution:
    """Capture resolution in pixels."""

    width: int = 1280
    height: int = 720

    def as_size(self) -> str:
        """Return the resolution as ``WIDTHxHEIGHT``."""
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class RunConfiguration:
    """Immutable input for one supervised broadcast.

    Attributes:
        url: Page to render and broadcast
        stream_key: Key appended to the ingest URL
        ingest_url: RTMP ingest endpoint
        resolution: Capture resolution
        audio_enabled: Whether background audio is mixed in
        audio_sources: Local paths or http(s) URLs of audio tracks
        max_retries: Failures tolerated before giving up
        retry_delay: Seconds to wait between recovery and restart
        rotation_interval: Seconds between planned restarts (None disables)
        use_virtual_display: Start Xvfb instead of using the native display
        display_number: X display number for the virtual display
        display_timeout: Seconds to wait for the virtual display marker
        headless: Run the browser headless (None picks from the display mode)
        navigation_timeout: Seconds allowed for page navigation
        render_settle: Seconds to let the page settle before declaring ready
        startup_timeout: Upper bound for each startup step; the renderer can
            spend navigation, network idle, selector wait and settle in turn
        asset_timeout: Seconds allowed for preparing audio before falling back
            to silence
        ready_selector: Optional CSS selector awaited after navigation
        snapshot_path: Where the verification screenshot is written
        health_period: Seconds between health samples
        stale_threshold: Unchanged samples that trigger a forced reload
        max_consecutive_reloads: Reloads without visual change before a full recovery
    """

    url: str = DEFAULT_URL
    stream_key: str = ""
    ingest_url: str = DEFAULT_INGEST_URL
    resolution: Resolution = field(default_factory=Resolution)
    audio_enabled: bool = False
    audio_sources: Tuple[str, ...] = ()
    max_retries: int = 3
    retry_delay: float = 5.0
    rotation_interval: Optional[float] = DEFAULT_ROTATION_INTERVAL
    use_virtual_display: bool = field(
        default_factory=lambda: platform.system() != "Darwin"
    )
    display_number: int = 99
    display_timeout: float = 2.0
    headless: Optional[bool] = None
    navigation_timeout: float = 60.0
    render_settle: float = 10.0
    startup_timeout: float = 240.0
    asset_timeout: float = 60.0
    ready_selector: Optional[str] = None
    snapshot_path: Optional[str] = "/tmp/page-screenshot.png"
    health_period: float = 60.0
    stale_threshold: int = 2
    max_consecutive_reloads: int = 2

    def __post_init__(self) -> None:
        self.validate()

    @property
    def destination(self) -> str:
        """Full RTMP destination including the stream key."""
        return f"{self.ingest_url.rstrip('/')}/{self.stream_key}"

    @property
    def display_name(self) -> Optional[str]:
        """X display name, or None when the native display is used."""
        if not self.use_virtual_display:
            return None
        return f":{self.display_number}"

    @property
    def run_headless(self) -> bool:
        """Whether the browser runs headless.

        The encoder grabs the virtual display, so the browser has to be
        headed there unless told otherwise.
        """
        if self.headless is not None:
            return self.headless
        return not self.use_virtual_display

    def validate(self) -> None:
        """Check field values, raising ConfigurationError on the first problem."""
        if not self.url.startswith(("http://", "https://")):
            raise ConfigurationError(f"URL must be http(s): {self.url!r}")
        if not self.stream_key:
            raise ConfigurationError("A stream key is required")
        width, height = self.resolution.width, self.resolution.height
        if width <= 0 or height <= 0:
            raise ConfigurationError(f"Invalid resolution {width}x{height}")
        if width % 2 or height % 2:
            raise ConfigurationError(
                f"Resolution must use even dimensions, got {width}x{height}"
            )
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0")
        if self.retry_delay < 0:
            raise ConfigurationError("retry_delay must be >= 0")
        if self.rotation_interval is not None and self.rotation_interval < 0:
            raise ConfigurationError("rotation_interval must be >= 0")
        if self.health_period <= 0:
            raise ConfigurationError("health_period must be > 0")
        if self.stale_threshold < 1:
            raise ConfigurationError("stale_threshold must be >= 1")
        if self.max_consecutive_reloads < 1:
            raise ConfigurationError("max_consecutive_reloads must be >= 1")
        if self.asset_timeout <= 0 or self.asset_timeout >= self.startup_timeout:
            raise ConfigurationError("asset_timeout must be > 0 and below startup_timeout")
        if self.display_timeout <= 0:
            raise ConfigurationError("display_timeout must be > 0")

    @classmethod
    def from_sources(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "RunConfiguration":
        """
        Build a configuration from explicit values, environment and defaults.

        Args:
            environ: Environment mapping (defaults to os.environ)
            **overrides: Explicit values; None means "not given"

        Returns:
            Resolved RunConfiguration

        Raises:
            ConfigurationError: If a value is unknown, unparsable or invalid
        """
        env = os.environ if environ is None else environ
        known = {f.name for f in fields(cls)} | {"width", "height"}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        values: Dict[str, Any] = {}
        for name, (env_names, parser) in _ENV_SOURCES.items():
            explicit = overrides.get(name)
            if explicit is not None:
                values[name] = explicit
                continue
            for env_name in env_names:
                raw = env.get(env_name)
                if raw is None or raw == "":
                    continue
                try:
                    values[name] = parser(env_name, raw)
                except ValueError as e:
                    raise ConfigurationError(
                        f"Invalid value for {env_name}: {raw!r}"
                    ) from e
                break

        for name, value in overrides.items():
            if name not in _ENV_SOURCES and value is not None:
                values[name] = value

        width = values.pop("width", None)
        height = values.pop("height", None)
        if "resolution" not in values and (width is not None or height is not None):
            default = Resolution()
            values["resolution"] = Resolution(
                width=int(width) if width is not None else default.width,
                height=int(height) if height is not None else default.height,
            )
        if "audio_sources" in values:
            values["audio_sources"] = tuple(values["audio_sources"])
        if values.get("rotation_interval") == 0:
            values["rotation_interval"] = None

        return cls(**values)


def _as_int(env_name: str, raw: str) -> int:
    return int(raw)


def _as_float(env_name: str, raw: str) -> float:
    return float(raw)


def _as_bool(env_name: str, raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(raw)


def _as_str(env_name: str, raw: str) -> str:
    return raw


def _as_list(env_name: str, raw: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _retry_delay(env_name: str, raw: str) -> float:
    # Legacy RETRY_DELAY is expressed in milliseconds
    if env_name == "RETRY_DELAY":
        return float(raw) / 1000.0
    return float(raw)


_ENV_SOURCES: Dict[str, Tuple[Tuple[str, ...], Callable[[str, str], Any]]] = {
    "url": (("PAGECAST_URL", "WEBSITE_URL"), _as_str),
    "stream_key": (("PAGECAST_STREAM_KEY", "YOUTUBE_STREAM_KEY"), _as_str),
    "ingest_url": (("PAGECAST_INGEST_URL",), _as_str),
    "width": (("PAGECAST_WIDTH", "RESOLUTION_WIDTH"), _as_int),
    "height": (("PAGECAST_HEIGHT", "RESOLUTION_HEIGHT"), _as_int),
    "audio_enabled": (("PAGECAST_AUDIO",), _as_bool),
    "audio_sources": (("PAGECAST_AUDIO_SOURCES",), _as_list),
    "max_retries": (("PAGECAST_MAX_RETRIES", "MAX_RETRIES"), _as_int),
    "retry_delay": (("PAGECAST_RETRY_DELAY", "RETRY_DELAY"), _retry_delay),
    "rotation_interval": (("PAGECAST_ROTATION_INTERVAL",), _as_float),
    "use_virtual_display": (("PAGECAST_VIRTUAL_DISPLAY",), _as_bool),
    "display_number": (("PAGECAST_DISPLAY_NUMBER",), _as_int),
    "ready_selector": (("PAGECAST_READY_SELECTOR",), _as_str),
    "health_period": (("PAGECAST_HEALTH_PERIOD",), _as_float),
    "stale_threshold": (("PAGECAST_STALE_THRESHOLD",), _as_int),
    "startup_timeout": (("PAGECAST_STARTUP_TIMEOUT",), _as_float),
    "asset_timeout": (("PAGECAST_ASSET_TIMEOUT",), _as_float),
}
