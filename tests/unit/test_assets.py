# Copyright 2026 Firefly Software Solutions Inc
# SPDX-License-Identifier: Apache-2.0

"""Unit tests for the audio asset provider."""

import os
import random
from unittest.mock import MagicMock, patch

import aiohttp
import pytest

from pagecast.core.assets import (
    AssetHistory,
    AssetProvider,
    AudioPlan,
    AudioPlanKind,
    order_sources,
)


@pytest.fixture
def tracks(tmp_path):
    paths = []
    for name in ("a.mp3", "b.mp3", "c.mp3"):
        path = tmp_path / name
        path.write_bytes(b"ID3")
        paths.append(str(path))
    return paths


class TestAudioPlan:
    """Tests for AudioPlan."""

    def test_disabled(self):
        plan = AudioPlan.disabled()
        assert plan.kind == AudioPlanKind.DISABLED
        assert plan.sources == ()
        assert plan.enabled is False

    def test_playlist_needs_two_sources(self):
        with pytest.raises(ValueError):
            AudioPlan.playlist(["/srv/a.mp3"])


class TestAssetHistory:
    """Tests for AssetHistory and order_sources()."""

    def test_record_returns_new_value(self):
        history = AssetHistory()
        updated = history.record(["a"])
        assert history.played == frozenset()
        assert updated.played == frozenset({"a"})

    def test_unplayed_sources_come_first(self):
        history = AssetHistory(frozenset({"a", "b"}))
        ordered, updated = order_sources(["a", "b", "c"], history, random.Random(1))
        assert ordered[0] == "c"
        assert sorted(ordered) == ["a", "b", "c"]
        assert updated.played == frozenset({"a", "b", "c"})
        assert history.played == frozenset({"a", "b"})

    def test_history_restarts_when_everything_played(self):
        history = AssetHistory(frozenset({"a", "b"}))
        ordered, updated = order_sources(["a", "b"], history, random.Random(1))
        assert sorted(ordered) == ["a", "b"]
        assert updated.played == frozenset(ordered[:1])

    def test_only_leading_source_is_recorded(self):
        ordered, updated = order_sources(["a", "b", "c"], AssetHistory(), random.Random(2))
        assert updated.played == frozenset({ordered[0]})


class TestAssetProvider:
    """Tests for AssetProvider.prepare()."""

    @pytest.mark.asyncio
    async def test_consecutive_plans_rotate_leading_track(self, tracks):
        provider = AssetProvider(tracks, rng=random.Random(7))

        leads = []
        for _ in range(3):
            plan = await provider.prepare(enabled=True)
            leads.append(plan.sources[0])

        assert sorted(leads) == sorted(tracks)

        plan = await provider.prepare(enabled=True)
        assert provider.history.played == frozenset(plan.sources[:1])

    @pytest.mark.asyncio
    async def test_disabled(self, tracks):
        provider = AssetProvider(tracks)
        assert await provider.prepare(enabled=False) == AudioPlan.disabled()

    @pytest.mark.asyncio
    async def test_enabled_without_sources(self):
        provider = AssetProvider()
        assert await provider.prepare(enabled=True) == AudioPlan.disabled()

    @pytest.mark.asyncio
    async def test_single_local_source(self, tracks):
        provider = AssetProvider(tracks[:1])
        plan = await provider.prepare(enabled=True)
        assert plan == AudioPlan.single(tracks[0])

    @pytest.mark.asyncio
    async def test_playlist_of_local_sources(self, tracks):
        provider = AssetProvider(tracks, rng=random.Random(3))
        plan = await provider.prepare(enabled=True)
        assert plan.kind == AudioPlanKind.PLAYLIST
        assert sorted(plan.sources) == sorted(tracks)
        assert provider.history.played == frozenset(plan.sources[:1])

    @pytest.mark.asyncio
    async def test_missing_source_degrades_to_silence(self, tracks, tmp_path):
        provider = AssetProvider([tracks[0], str(tmp_path / "missing.mp3")])
        plan = await provider.prepare(enabled=True)
        assert plan == AudioPlan.disabled()
        assert provider.history.played == frozenset()

    @pytest.mark.asyncio
    async def test_download_failure_degrades_to_silence(self, tmp_path):
        provider = AssetProvider(["https://example.com/a.mp3"], tmp_dir=str(tmp_path))
        session = MagicMock()
        session.__aenter__.side_effect = aiohttp.ClientError("connection refused")
        with patch("pagecast.core.assets.aiohttp.ClientSession", return_value=session):
            plan = await provider.prepare(enabled=True)
        assert plan == AudioPlan.disabled()
        assert os.listdir(tmp_path) == []

    @pytest.mark.asyncio
    async def test_download_and_cleanup(self, tmp_path):
        provider = AssetProvider(["https://example.com/music/a.mp3"], tmp_dir=str(tmp_path))

        async def iter_chunked(size):
            yield b"ID3"
            yield b"data"

        resp = MagicMock()
        resp.status = 200
        resp.content.iter_chunked = iter_chunked
        request = MagicMock()
        request.__aenter__.return_value = resp
        client = MagicMock()
        client.get.return_value = request
        session = MagicMock()
        session.__aenter__.return_value = client

        with patch("pagecast.core.assets.aiohttp.ClientSession", return_value=session):
            plan = await provider.prepare(enabled=True)

        assert plan.kind == AudioPlanKind.SINGLE
        path = plan.sources[0]
        assert path.endswith("000-a.mp3")
        with open(path, "rb") as f:
            assert f.read() == b"ID3data"

        provider.cleanup()
        provider.cleanup()
        assert not os.path.exists(path)

    @pytest.mark.asyncio
    async def test_http_error_degrades_to_silence(self, tmp_path):
        provider = AssetProvider(["https://example.com/a.mp3"], tmp_dir=str(tmp_path))
        resp = MagicMock()
        resp.status = 404
        request = MagicMock()
        request.__aenter__.return_value = resp
        client = MagicMock()
        client.get.return_value = request
        session = MagicMock()
        session.__aenter__.return_value = client

        with patch("pagecast.core.assets.aiohttp.ClientSession", return_value=session):
            plan = await provider.prepare(enabled=True)

        assert plan == AudioPlan.disabled()

    @pytest.mark.asyncio
    async def test_providers_do_not_share_history(self, tracks):
        first = AssetProvider(tracks[:2])
        second = AssetProvider(tracks[:2])
        await first.prepare(enabled=True)
        assert second.history.played == frozenset()
