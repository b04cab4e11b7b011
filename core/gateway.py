import asyncio
import logging
from typing import AsyncIterator, Optional

from core.cache import FifoCache
from core.exceptions import (
    EmptyQuery,
    MissingSource,
    PartialDeliveryError,
    ProviderError,
    ResolutionFailed,
    UpstreamError,
)
from core.models import SearchResult
from core.provider import AudioSource, UpstreamProvider

logger = logging.getLogger(__name__)

AUDIO_MEDIA_TYPE = "audio/mpeg"


def normalize_query(query: Optional[str]) -> str:
    return " ".join((query or "").split()).lower()


class AudioStream:
    """
    An extraction whose first chunk has already arrived.

    Iterating yields the audio bytes. The underlying source is closed on
    every exit path, including cancellation when the client goes away.
    """

    def __init__(self, source: AudioSource, chunks: AsyncIterator[bytes], first_chunk: bytes, download: bool):
        self.source = source
        self._chunks = chunks
        self._first_chunk = first_chunk
        self.download = download
        self.media_type = AUDIO_MEDIA_TYPE

    @property
    def headers(self) -> dict[str, str]:
        disposition = "attachment" if self.download else "inline"
        return {"Content-Disposition": f'{disposition}; filename="audio.mp3"'}

    async def __aiter__(self) -> AsyncIterator[bytes]:
        sent = 0
        try:
            yield self._first_chunk
            sent += len(self._first_chunk)
            async for chunk in self._chunks:
                yield chunk
                sent += len(chunk)
            logger.info(f"Stream complete: {sent} bytes")
        except UpstreamError as e:
            logger.error(f"Stream aborted after {sent} bytes: {e} {e.detail}")
            raise PartialDeliveryError(f"Stream aborted after {sent} bytes") from e
        except asyncio.CancelledError:
            logger.info(f"Client disconnected after {sent} bytes")
            raise
        finally:
            await self.close()

    async def close(self) -> None:
        await self.source.close()


class MediaGateway:
    def __init__(
        self,
        provider: UpstreamProvider,
        search_limit: int = 15,
        cache_capacity: int = 100,
        resolve_timeout: float = 30.0,
    ):
        self.provider = provider
        self.search_limit = search_limit
        self.resolve_timeout = resolve_timeout
        self.suggestion_cache = FifoCache(cache_capacity, name="suggestions")
        self.search_cache = FifoCache(cache_capacity, name="search")

    async def suggest(self, query: Optional[str]) -> list[str]:
        """Autocomplete strings. Never raises; failures yield []."""
        key = normalize_query(query)
        if not key:
            return []

        cached = self.suggestion_cache.get(key)
        if cached is not None:
            return cached

        try:
            suggestions = await self.provider.suggest(query.strip())
        except Exception as e:
            logger.warning(f"Suggestions error for '{query}': {e}")
            return []

        self.suggestion_cache.put(key, suggestions)
        return suggestions

    async def search(self, query: Optional[str]) -> list[SearchResult]:
        key = normalize_query(query)
        if not key:
            raise EmptyQuery("Query is missing")

        cached = self.search_cache.get(key)
        if cached is not None:
            logger.info(f"[Cache Hit] Search: {key}")
            return cached

        try:
            candidates = await self.provider.search(query.strip(), self.search_limit)
            results = [SearchResult(**c) for c in candidates[: self.search_limit]]
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError("Search failed", detail=str(e)) from e

        self.search_cache.put(key, results)
        return results

    async def open_stream(self, source_url: Optional[str], download: bool = False) -> AudioStream:
        """
        Start extraction and wait for the first bytes, so a failure to resolve
        surfaces before any response header has been sent.
        """
        if not source_url or not source_url.strip():
            raise MissingSource("Track URL is missing")

        logger.info(f"[Stream] Resolving {source_url} (download={download})")
        source = await self.provider.open_audio(source_url)
        chunks = source.chunks()
        try:
            first_chunk = await asyncio.wait_for(anext(chunks), timeout=self.resolve_timeout)
        except StopAsyncIteration as e:
            await source.close()
            raise ResolutionFailed("Upstream produced no audio", detail=source_url) from e
        except asyncio.TimeoutError as e:
            await source.close()
            raise ResolutionFailed("Timed out waiting for audio", detail=source_url) from e
        except BaseException:
            await source.close()
            raise

        return AudioStream(source, chunks, first_chunk, download)

    async def close(self):
        await self.provider.close()
