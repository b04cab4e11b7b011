import asyncio
import json
import logging
from typing import AsyncIterator

import httpx

from core.exceptions import ProviderError, ResolutionFailed

logger = logging.getLogger(__name__)


def format_duration(seconds: float | int | None) -> str:
    """Render seconds as 'm:ss' or 'h:mm:ss'."""
    if not seconds:
        return ""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_search_line(line: str) -> dict | None:
    """Map one line of yt-dlp --dump-json output to a candidate dict."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    video_id = data.get("id")
    if not video_id:
        return None

    thumbnails = data.get("thumbnails") or []
    artwork = thumbnails[-1].get("url", "") if thumbnails else ""
    if not artwork:
        artwork = f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"

    return {
        "id": video_id,
        "title": data.get("title", "Unknown"),
        "artist": data.get("channel") or data.get("uploader") or "Unknown Artist",
        "artwork": artwork,
        "duration": format_duration(data.get("duration")),
        "url": data.get("webpage_url") or data.get("url") or f"https://www.youtube.com/watch?v={video_id}",
    }


class AudioSource:
    """A running yt-dlp extraction writing audio bytes to its stdout."""

    def __init__(self, process: asyncio.subprocess.Process, chunk_size: int = 64 * 1024):
        self.process = process
        self.chunk_size = chunk_size

    async def chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.process.stdout.read(self.chunk_size)
            if not chunk:
                break
            yield chunk

        returncode = await self.process.wait()
        if returncode != 0:
            stderr = (await self.process.stderr.read()).decode(errors="replace")
            raise ResolutionFailed(
                f"yt-dlp exited with code {returncode}", detail=stderr[-300:].strip()
            )

    async def close(self) -> None:
        """Kill the extraction if it is still running and reap it."""
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            await self.process.wait()
            logger.info(f"Extraction process {self.process.pid} terminated")


class UpstreamProvider:
    def __init__(
        self,
        suggest_url: str,
        user_agent: str,
        ytdlp_path: str = "yt-dlp",
        suggest_timeout: float = 3.0,
        search_timeout: float = 30.0,
        chunk_size: int = 64 * 1024,
        client: httpx.AsyncClient | None = None,
    ):
        self.suggest_url = suggest_url
        self.ytdlp_path = ytdlp_path
        self.search_timeout = search_timeout
        self.chunk_size = chunk_size
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=suggest_timeout,
        )

    async def suggest(self, query: str) -> list[str]:
        """Autocomplete. Response shape is [query, [suggestion, ...]]."""
        resp = await self.client.get(
            self.suggest_url,
            params={"client": "firefox", "ds": "yt", "q": query},
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, list) or len(data) < 2 or not isinstance(data[1], list):
            raise ValueError(f"Unexpected suggestion payload: {str(data)[:100]}")
        return [s for s in data[1] if isinstance(s, str)]

    async def search(self, query: str, limit: int = 15) -> list[dict]:
        """Run a yt-dlp search and return candidates in relevance order."""
        cmd = [
            self.ytdlp_path,
            f"ytsearch{limit}:{query}",
            "--flat-playlist", "--dump-json",
            "--quiet", "--no-warnings",
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ProviderError("Could not start yt-dlp", detail=str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.search_timeout
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ProviderError("Search timed out", detail=query) from e

        if process.returncode != 0:
            raise ProviderError(
                f"yt-dlp search exited with code {process.returncode}",
                detail=stderr.decode(errors="replace")[-300:].strip(),
            )

        results = []
        for line in stdout.decode(errors="replace").splitlines():
            if not line.strip():
                continue
            candidate = parse_search_line(line)
            if candidate is not None:
                results.append(candidate)
        logger.info(f"Search '{query}': {len(results)} candidates")
        return results

    async def open_audio(self, url: str) -> AudioSource:
        """Start extracting the best audio-only format of url to a pipe."""
        cmd = [
            self.ytdlp_path,
            "-f", "bestaudio",
            "-o", "-",
            "--quiet", "--no-warnings", "--no-playlist",
            "--", url,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ResolutionFailed("Could not start yt-dlp", detail=str(e)) from e
        logger.info(f"Extraction process {process.pid} started for {url}")
        return AudioSource(process, self.chunk_size)

    async def close(self):
        await self.client.aclose()
