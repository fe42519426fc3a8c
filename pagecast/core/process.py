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

"""Helpers shared by the components that wrap external processes."""

from __future__ import annotations

import asyncio
import re
from collections import deque
from typing import Callable, Deque, Optional

from pagecast.utils.logger import logger

# ffmpeg terminates progress lines with a bare carriage return
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")

READ_SIZE = 4096
MAX_LINE = 64 * 1024


async def pump_lines(
    stream: Optional[asyncio.StreamReader],
    on_line: Callable[[str], None],
    tail: Optional[Deque[str]] = None,
    max_line: int = MAX_LINE,
) -> None:
    """Forward every line of a subprocess stream to ``on_line``.

    Lines end at ``\\n``, ``\\r\\n`` or a bare ``\\r``. A run of output
    longer than ``max_line`` without any line break is forwarded as is.

    Args:
        stream: Subprocess stdout/stderr reader (None is a no-op)
        on_line: Called with each decoded, stripped, non-empty line
        tail: Optional bounded deque receiving the same lines
        max_line: Longest partial line held back waiting for a break
    """
    if stream is None:
        return

    def emit(raw: bytes) -> None:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            return
        if tail is not None:
            tail.append(line)
        on_line(line)

    pending = b""
    while True:
        chunk = await stream.read(READ_SIZE)
        if not chunk:
            break
        pending += chunk
        *complete, pending = _LINE_BREAK.split(pending)
        for raw in complete:
            emit(raw)
        if len(pending) > max_line:
            emit(pending)
            pending = b""
    emit(pending)


def new_tail(size: int = 20) -> Deque[str]:
    """Bounded buffer for the last lines of subprocess output."""
    return deque(maxlen=size)


async def terminate_process(
    process: asyncio.subprocess.Process,
    name: str,
    timeout: float = 5.0,
) -> Optional[int]:
    """Stop a subprocess, escalating from SIGTERM to SIGKILL.

    Never raises if the process already exited.

    Returns:
        The process exit code
    """
    if process.returncode is not None:
        return process.returncode
    try:
        process.terminate()
    except ProcessLookupError:
        return process.returncode
    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} did not exit after SIGTERM, killing...")
    try:
        process.kill()
    except ProcessLookupError:
        pass
    return await process.wait()
