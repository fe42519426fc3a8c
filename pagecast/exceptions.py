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

"""Custom exceptions for Pagecast.

This module defines the exception hierarchy used throughout Pagecast.
All exceptions inherit from PagecastError so the supervisor can treat any
component failure through a single except clause.

Exception Hierarchy:
    PagecastError (base)
    ├── ConfigurationError - Invalid or missing run configuration
    ├── DisplayError - Virtual display failed to come up
    ├── RendererError - Browser session errors
    │   └── NavigationError - Target page failed to load
    ├── EncoderError - ffmpeg could not be launched
    ├── AssetError - Audio asset acquisition failures (never leaves the provider)
    ├── StartupTimeoutError - A component did not confirm readiness in time
    └── RetryExhaustedError - The supervisor ran out of retries

Example:
    try:
        await display.start(config.resolution)
    except DisplayError:
        # Counted against the retry budget by the supervisor
        pass
    except PagecastError:
        # Catch all Pagecast errors
        pass
"""


class PagecastError(Exception):
    """Base exception for all Pagecast errors."""
    pass


class ConfigurationError(PagecastError):
    """Exception raised for configuration errors.

    Examples:
        - Missing stream key
        - Non-numeric value in a PAGECAST_* environment variable
        - Odd capture width (x264 needs even dimensions)
    """
    pass


class DisplayError(PagecastError):
    """Exception raised when the rendering surface cannot be brought up.

    Examples:
        - Xvfb binary missing
        - Xvfb exited during startup
        - Lock marker never appeared within the startup timeout
    """
    pass


class RendererError(PagecastError):
    """Exception raised for browser session errors.

    Examples:
        - Browser failed to launch
        - Page crashed or browser disconnected while streaming
        - Fingerprint capture failed
    """
    pass


class NavigationError(RendererError):
    """Exception raised when the target page cannot be loaded."""
    pass


class EncoderError(PagecastError):
    """Exception raised when the ffmpeg process cannot be started."""
    pass


class AssetError(PagecastError):
    """Exception raised while acquiring audio assets.

    The asset provider catches this itself and degrades to silence;
    it is never seen by the supervisor.
    """
    pass


class StartupTimeoutError(PagecastError):
    """Exception raised when a component does not report ready in time."""
    pass


class RetryExhaustedError(PagecastError):
    """Exception raised when the supervisor has used up its retry budget."""
    pass
