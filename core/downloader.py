import asyncio
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import httpx

from core.exceptions import DownloadFailed
from core.models import DownloadJob, DownloadStatus, Track
from core.storage import DOWNLOADS_KEY, JsonStore, load_tracks, parse_tracks
from core.tagger import Tagger

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class DownloadOutcome(str, Enum):
    DOWNLOADED = "downloaded"
    ALREADY_DOWNLOADED = "already_downloaded"


class DownloadManager:
    def __init__(
        self,
        store: JsonStore,
        download_dir: str,
        tagger: Optional[Tagger] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.store = store
        self.download_dir = download_dir
        self.tagger = tagger
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self.jobs: dict[str, DownloadJob] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    def list(self) -> tuple[Track, ...]:
        return tuple(load_tracks(self.store, DOWNLOADS_KEY))

    def is_downloaded(self, track_id: str) -> bool:
        return any(t.id == track_id for t in self.list())

    def local_path(self, track_id: str) -> str:
        return os.path.join(self.download_dir, f"{track_id}.mp3")

    async def download(
        self, track: Track, on_progress: Optional[ProgressCallback] = None
    ) -> DownloadOutcome:
        """
        Fetch a track for offline playback. Idempotent per track id: a track
        already in the manifest returns immediately, and a track whose download
        is in flight joins that download instead of starting another.
        """
        if self.is_downloaded(track.id):
            logger.info(f"Already downloaded: {track.id}")
            return DownloadOutcome.ALREADY_DOWNLOADED

        task = self._in_flight.get(track.id)
        if task is None:
            task = asyncio.create_task(self._download(track, on_progress))
            self._in_flight[track.id] = task
            task.add_done_callback(lambda _: self._in_flight.pop(track.id, None))
        else:
            logger.info(f"Download already in flight: {track.id}")

        return await asyncio.shield(task)

    async def _download(
        self, track: Track, on_progress: Optional[ProgressCallback]
    ) -> DownloadOutcome:
        job = DownloadJob(track_id=track.id, title=track.title, status=DownloadStatus.DOWNLOADING)
        self.jobs[track.id] = job
        output_path = self.local_path(track.id)
        part_path = f"{output_path}.part"
        logger.info(f"Downloading: {track.artist} - {track.title} -> {output_path}")

        try:
            os.makedirs(self.download_dir, exist_ok=True)
            async with self.client.stream("GET", track.url) as resp:
                if resp.status_code != 200:
                    raise DownloadFailed(
                        f"Download failed with status {resp.status_code}",
                        status=resp.status_code,
                    )
                total = int(resp.headers.get("Content-Length") or 0)
                written = 0
                with open(part_path, "wb") as f:
                    async for chunk in resp.aiter_bytes():
                        f.write(chunk)
                        written += len(chunk)
                        if total:
                            job.progress_pct = min(written / total, 1.0) * 100
                            self._report(on_progress, written / total)
            os.replace(part_path, output_path)
        except DownloadFailed as e:
            self._fail(job, part_path, str(e))
            raise
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            self._fail(job, part_path, str(e))
            raise DownloadFailed("Download failed", detail=str(e)) from e

        if self.tagger is not None:
            try:
                await self.tagger.tag_file(output_path, track)
            except Exception as e:
                logger.warning(f"Tagging failed: {e}")

        downloaded = track.model_copy(update={"local_uri": Path(output_path).resolve().as_uri()})

        def append(items):
            manifest = parse_tracks(items, DOWNLOADS_KEY)
            if not any(t.id == track.id for t in manifest):
                manifest.append(downloaded)
            return [t.model_dump() for t in manifest]

        self.store.update(DOWNLOADS_KEY, append, [])

        job.status = DownloadStatus.COMPLETE
        job.progress_pct = 100.0
        job.output_path = output_path
        logger.info(f"Complete: {track.artist} - {track.title} -> {output_path}")
        return DownloadOutcome.DOWNLOADED

    def _report(self, on_progress: Optional[ProgressCallback], fraction: float) -> None:
        # Delivered through the event loop, never inline with the transfer
        if on_progress is not None:
            asyncio.get_running_loop().call_soon(on_progress, min(fraction, 1.0))

    def _fail(self, job: DownloadJob, part_path: str, error: str) -> None:
        job.status = DownloadStatus.FAILED
        job.error = error
        logger.error(f"Download failed for {job.track_id}: {error}")
        try:
            os.remove(part_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {part_path}: {e}")

    async def delete(self, track_id: str) -> bool:
        self.store.update(
            DOWNLOADS_KEY,
            lambda items: [t.model_dump() for t in parse_tracks(items, DOWNLOADS_KEY) if t.id != track_id],
            [],
        )

        try:
            os.remove(self.local_path(track_id))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove file for {track_id}: {e}")
        self.jobs.pop(track_id, None)
        return True

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
