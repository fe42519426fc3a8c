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
Pagecast - Unattended live broadcasting of web pages.

This package renders a live web page in a browser on a virtual display,
encodes the display with ffmpeg into an RTMP stream, and supervises the
whole chain: restarting on failure, reloading stale pages, and rotating
on a schedule to bound long-run resource growth.
"""

__version__ = "0.1.0"
__author__ = "Firefly Software Solutions Inc"
__license__ = "Apache-2.0"

from pagecast.config import Resolution, RunConfiguration
from pagecast.core.assets import AssetHistory, AssetProvider, AudioPlan, AudioPlanKind
from pagecast.core.display import NativeDisplay, VirtualDisplay, create_display
from pagecast.core.encoder import EncoderProcess, EncoderSettings
from pagecast.core.health import HealthMonitor, StalenessDetector
from pagecast.core.renderer import PageAdapter, RenderHost, RepaintAdapter
from pagecast.core.supervisor import Supervisor, SupervisorState

__all__ = [
    # Configuration
    "Resolution",
    "RunConfiguration",
    # Components
    "AssetHistory",
    "AssetProvider",
    "AudioPlan",
    "AudioPlanKind",
    "EncoderProcess",
    "EncoderSettings",
    "HealthMonitor",
    "NativeDisplay",
    "PageAdapter",
    "RenderHost",
    "RepaintAdapter",
    "StalenessDetector",
    "VirtualDisplay",
    "create_display",
    # Supervision
    "Supervisor",
    "SupervisorState",
]
