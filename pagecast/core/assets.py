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
Background audio for Pagecast.

The AssetProvider turns the configured audio sources into an AudioPlan
for one encoding session. Remote sources are downloaded with aiohttp
into a directory the provider owns and removes on cleanup.

Audio is an enhancement: any failure while preparing it degrades the
plan to silence and is never raised to the caller.
"""

from __future__ import annotations

import asyncio
import os
import random
import re
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

import aiohttp

from pagecast.exceptions import AssetError
from pagecast.utils.logger import logger


class AudioPlanKind(str, Enum):
    """How the encoder should source its audio track."""
    DISABLED = "disabled"
    SINGLE = "single"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class AudioPlan:
    """Resolved audio configuration for one encoding session."""

    kind: AudioPlanKind = AudioPlanKind.DISABLED
    sources: Tuple[str, ...] = ()

    @classmethod
    def disabled(cls) -> "AudioPlan":
        return cls(AudioPlanKind.DISABLED, ())

    @classmethod
    def single(cls, path: str) -> "AudioPlan":
        return cls(AudioPlanKind.SINGLE, (path,))

    @classmethod
    def playlist(cls, paths: Sequence[str]) -> "AudioPlan":
        if len(paths) < 2:
            raise ValueError("A playlist needs at least two sources")
        return cls(AudioPlanKind.PLAYLIST, tuple(paths))

    @property
    def enabled(self) -> bool:
        return self.kind != AudioPlanKind.DISABLED


@dataclass(frozen=True)
class AssetHistory:
    """Sources that opened a previous plan, so the next plan can lead with a fresh one."""

    played: FrozenSet[str] = frozenset()

    def record(self, sources: Iterable[str]) -> "AssetHistory":
        return AssetHistory(self.played | frozenset(sources))

    def reset(self) -> "AssetHistory":
        return AssetHistory()

    def unplayed(self, sources: Iterable[str]) -> List[str]:
        return [source for source in sources if source not in self.played]


def order_sources(
    sources: Sequence[str],
    history: AssetHistory,
    rng: Optional[random.Random] = None,
) -> Tuple[List[str], AssetHistory]:
    """
    Shuffle sources, putting ones that have not opened a plan first.

    Only the leading source is recorded. Once every source has led a
    plan the history starts over.

    Returns:
        (ordered sources, updated history)
    """
    rng = rng or random.Random()
    unique = list(dict.fromkeys(sources))
    fresh = history.unplayed(unique)
    if not fresh:
        history = history.reset()
        fresh = unique
    stale = [source for source in unique if source not in fresh]
    rng.shuffle(fresh)
    rng.shuffle(stale)
    ordered = fresh + stale
    return ordered, history.record(ordered[:1])


def _is_remote(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


def _local_name(index: int, url: str) -> str:
    base = os.path.basename(urlparse(url).path) or "track"
    base = re.sub(r"[^A-Za-z0-9._-]", "_", base)
    return f"{index:03d}-{base}"


class AssetProvider:
    """
    Prepares the AudioPlan handed to the encoder.

    Attributes:
        sources: Local paths or http(s) URLs of audio tracks
        history: Sources that opened previous plans

    Example:
        >>> provider = AssetProvider(["https://example.com/a.mp3", "/srv/b.mp3"])
        >>> plan = await provider.prepare(enabled=True)
        >>> plan.kind
        <AudioPlanKind.PLAYLIST: 'playlist'>
        >>> provider.cleanup()
    """

    def __init__(
        self,
        sources: Sequence[str] = (),
        history: Optional[AssetHistory] = None,
        rng: Optional[random.Random] = None,
        download_timeout: float = 60.0,
        tmp_dir: Optional[str] = None,
    ) -> None:
        self.sources = tuple(sources)
        self.history = history or AssetHistory()
        self.download_timeout = download_timeout
        self._rng = rng or random.Random()
        self._tmp_dir = tmp_dir
        self._download_dir: Optional[str] = None

    async def prepare(self, enabled: bool) -> AudioPlan:
        """
        Resolve the audio plan for the next encoding session.

        Args:
            enabled: Whether audio is wanted at all

        Returns:
            An AudioPlan; DISABLED on any failure
        """
        if not enabled:
            logger.info("[ASSETS] Audio disabled")
            return AudioPlan.disabled()
        if not self.sources:
            logger.warning("[ASSETS] Audio enabled but no sources configured, streaming silence")
            return AudioPlan.disabled()

        ordered, history = order_sources(self.sources, self.history, self._rng)
        try:
            paths = await self._materialize(ordered)
        except (AssetError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"[ASSETS] Audio unavailable, streaming silence: {e}")
            self.cleanup()
            return AudioPlan.disabled()

        self.history = history
        if len(paths) == 1:
            plan = AudioPlan.single(paths[0])
        else:
            plan = AudioPlan.playlist(paths)
        logger.info(f"[ASSETS] Audio plan: {plan.kind.value} ({len(paths)} source(s))")
        return plan

    async def _materialize(self, ordered: Sequence[str]) -> List[str]:
        remote = [source for source in ordered if _is_remote(source)]
        downloaded = {}
        if remote:
            downloaded = await self._download(remote)

        paths = []
        for source in ordered:
            path = downloaded.get(source, source)
            if not os.path.isfile(path):
                raise AssetError(f"Audio source not found: {source}")
            paths.append(path)
        return paths

    async def _download(self, urls: Sequence[str]) -> dict:
        if self._download_dir is None:
            self._download_dir = tempfile.mkdtemp(prefix="pagecast-audio-", dir=self._tmp_dir)
        timeout = aiohttp.ClientTimeout(total=self.download_timeout)
        results = {}
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for index, url in enumerate(urls):
                target = os.path.join(self._download_dir, _local_name(index, url))
                logger.info(f"[ASSETS] Downloading {url}")
                async with session.get(url) as resp:
                    if resp.status != 200:
                        raise AssetError(f"Download of {url} failed with HTTP {resp.status}")
                    with open(target, "wb") as f:
                        async for chunk in resp.content.iter_chunked(64 * 1024):
                            f.write(chunk)
                results[url] = target
        return results

    def cleanup(self) -> None:
        """Remove downloaded files. Safe to call repeatedly."""
        path = self._download_dir
        self._download_dir = None
        if path and os.path.isdir(path):
            shutil.rmtree(path, ignore_errors=True)
            logger.debug(f"[ASSETS] Removed {path}")
