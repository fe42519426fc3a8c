# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Tests for process helpers and session handles."""

import asyncio
import sys

import pytest

from pagecast.core.process import new_tail, pump_lines, terminate_process
from pagecast.core.session import SessionHandle, SessionState


class TestSessionHandle:
    """Tests for SessionHandle state changes."""

    def test_starts_active(self):
        handle = SessionHandle(kind="encoder", pid=123)
        assert handle.state == SessionState.STARTING
        assert handle.is_active is True

    def test_alive_promotes_to_running(self):
        handle = SessionHandle(kind="renderer")
        handle.mark_alive()
        assert handle.state == SessionState.RUNNING
        assert handle.last_seen_alive > 0

    def test_stopping_does_not_revive_failed(self):
        handle = SessionHandle(kind="display")
        handle.mark_failed()
        handle.mark_stopping()
        assert handle.state == SessionState.FAILED
        assert handle.is_active is False


class TestPumpLines:
    """Tests for pump_lines()."""

    @pytest.mark.asyncio
    async def test_forwards_non_empty_lines(self):
        reader = asyncio.StreamReader()
        reader.feed_data(b"first\n\nsecond\r\nthird")
        reader.feed_eof()
        lines = []
        tail = new_tail(size=2)

        await pump_lines(reader, lines.append, tail)

        assert lines == ["first", "second", "third"]
        assert list(tail) == ["second", "third"]

    @pytest.mark.asyncio
    async def test_none_stream_is_noop(self):
        await pump_lines(None, pytest.fail)


class TestTerminateProcess:
    """Tests for terminate_process()."""

    @pytest.mark.asyncio
    async def test_terminates_running_process(self):
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-c", "import time; time.sleep(30)"
        )
        code = await terminate_process(process, "sleeper", timeout=5.0)
        assert code is not None
        assert process.returncode is not None

    @pytest.mark.asyncio
    async def test_exited_process_returns_code(self):
        process = await asyncio.create_subprocess_exec(sys.executable, "-c", "pass")
        await process.wait()
        assert await terminate_process(process, "quick") == 0


class TestPumpLinesLongOutput:
    """pump_lines() with progress-style output."""

    @pytest.mark.asyncio
    async def test_carriage_return_lines_beyond_buffer_limit(self):
        reader = asyncio.StreamReader(limit=1024)
        for i in range(1000):
            reader.feed_data(b"frame=%5d fps=30 size=%8dkB speed=1.00x    \r" % (i, i))
        reader.feed_eof()
        lines = []

        await pump_lines(reader, lines.append)

        assert len(lines) == 1000
        assert lines[0] == "frame=    0 fps=30 size=       0kB speed=1.00x"
        assert lines[-1].startswith("frame=  999")

    @pytest.mark.asyncio
    async def test_unbroken_output_is_flushed(self):
        reader = asyncio.StreamReader()
        reader.feed_data(b"x" * 5000 + b"\nend")
        reader.feed_eof()
        lines = []

        await pump_lines(reader, lines.append, max_line=1000)

        assert "".join(lines[:-1]) == "x" * 5000
        assert lines[-1] == "end"
