"""
Client-side wiring: the persisted state, download manager and playback
session a player front end works with, all built from one Settings.
"""

import logging
import random
from typing import Optional, Sequence

import httpx

from config import Settings
from core.downloader import DownloadManager
from core.models import SearchResult, Track
from core.session import AudioTransport, Notify, PlaybackSession
from core.storage import JsonStore, LikedSongs, RecentSearches
from core.tagger import Tagger

logger = logging.getLogger(__name__)


class ClientContext:
    def __init__(
        self,
        settings: Settings,
        transport: AudioTransport,
        notify: Optional[Notify] = None,
        tagger: Optional[Tagger] = None,
        client: Optional[httpx.AsyncClient] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.store = JsonStore(settings.state_file)
        self.likes = LikedSongs(self.store)
        self.recent = RecentSearches(self.store, limit=settings.recent_search_limit)
        self.downloads = DownloadManager(
            self.store, settings.download_dir, tagger=tagger, client=client
        )
        self.session = PlaybackSession(transport, self.likes, notify=notify, rng=rng)

    def playlist_from_results(self, results: Sequence[SearchResult | dict]) -> list[Track]:
        """Turn gateway search results into Tracks that stream through this gateway."""
        return [
            Track.from_result(SearchResult.model_validate(r), self.settings.public_base_url)
            for r in results
        ]

    async def start(self) -> None:
        await self.session.start()
        logger.info(f"Client state at {self.settings.state_file}, downloads in {self.settings.download_dir}")

    async def close(self) -> None:
        await self.session.stop()
        await self.downloads.close()

    async def __aenter__(self) -> "ClientContext":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False
