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

"""Lifecycle bookkeeping for the external processes Pagecast supervises."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SessionState(str, Enum):
    """Lifecycle state of one external process."""
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class SessionHandle:
    """One live external process (display surface, renderer or encoder).

    A handle is owned by the component that started the process and is
    never handed to other components.
    """

    kind: str
    pid: Optional[int] = None
    started_at: float = field(default_factory=time.time)
    last_seen_alive: float = 0.0
    state: SessionState = SessionState.STARTING

    def mark_alive(self) -> None:
        self.last_seen_alive = time.time()
        if self.state == SessionState.STARTING:
            self.state = SessionState.RUNNING

    def mark_stopping(self) -> None:
        if self.state not in (SessionState.STOPPED, SessionState.FAILED):
            self.state = SessionState.STOPPING

    def mark_stopped(self) -> None:
        self.state = SessionState.STOPPED

    def mark_failed(self) -> None:
        self.state = SessionState.FAILED

    @property
    def is_active(self) -> bool:
        return self.state in (SessionState.STARTING, SessionState.RUNNING)

    @property
    def uptime(self) -> float:
        """Seconds since the process was started."""
        return time.time() - self.started_at
