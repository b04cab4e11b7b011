"""Shared fixtures and stand-ins for the provider and the audio transport."""

import asyncio

import pytest

from core.exceptions import ResolutionFailed, TransportError
from core.models import Track
from core.storage import JsonStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_track(i: int, **overrides) -> Track:
    fields = {
        "id": f"vid{i}",
        "title": f"Song {i}",
        "artist": f"Artist {i}",
        "artwork": f"https://img.example/{i}.jpg",
        "duration": "3:00",
        "url": f"http://gateway.test/stream?url=https%3A%2F%2Fyt.example%2F{i}",
    }
    fields.update(overrides)
    return Track(**fields)


def make_candidate(i: int) -> dict:
    return {
        "id": f"vid{i}",
        "title": f"Song {i}",
        "artist": f"Artist {i}",
        "artwork": f"https://img.example/{i}.jpg",
        "duration": "3:00",
        "url": f"https://yt.example/watch?v=vid{i}",
    }


class StubSource:
    """Audio source yielding fixed chunks, then optionally failing or hanging."""

    def __init__(self, chunks=(), error: Exception | None = None, hang: bool = False):
        self._chunks = list(chunks)
        self.error = error
        self.hang = hang
        self.closed = False

    async def chunks(self):
        for chunk in self._chunks:
            yield chunk
        if self.hang:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class StubProvider:
    def __init__(self, suggestions=None, results=None, source_factory=None):
        self.suggestions = suggestions if suggestions is not None else ["lofi beats", "lofi hip hop"]
        self.results = results if results is not None else [make_candidate(i) for i in range(20)]
        self.source_factory = source_factory or (lambda url: StubSource([b"abc", b"def"]))
        self.suggest_error: Exception | None = None
        self.search_error: Exception | None = None
        self.suggest_calls = 0
        self.search_calls = 0
        self.sources: list[StubSource] = []
        self.closed = False

    async def suggest(self, query):
        self.suggest_calls += 1
        if self.suggest_error:
            raise self.suggest_error
        return list(self.suggestions)

    async def search(self, query, limit=15):
        self.search_calls += 1
        if self.search_error:
            raise self.search_error
        return list(self.results)

    async def open_audio(self, url):
        source = self.source_factory(url)
        self.sources.append(source)
        return source

    async def close(self):
        self.closed = True


def failing_source(url):
    return StubSource(error=ResolutionFailed("no formats", detail="unavailable"))


class FakeTransport:
    def __init__(self, fail_urls=(), fail_play_urls=()):
        self.playing = False
        self.source = None
        self.position = 0.0
        self.fail_urls = set(fail_urls)
        self.fail_play_urls = set(fail_play_urls)
        self.replaced: list[str] = []
        self.seeks: list[float] = []

    async def replace(self, url):
        if url in self.fail_urls:
            raise TransportError(f"cannot load {url}")
        self.source = url
        self.position = 0.0
        self.playing = False
        self.replaced.append(url)

    async def play(self):
        if self.source in self.fail_play_urls:
            raise TransportError(f"cannot start {self.source}")
        self.playing = True

    async def pause(self):
        self.playing = False

    async def seek(self, seconds):
        self.position = seconds
        self.seeks.append(seconds)

    def finish(self):
        """Simulate the natural end of the current track."""
        self.playing = False
        self.position = 180.0


@pytest.fixture
def store(tmp_path):
    return JsonStore(str(tmp_path / "state.json"))


@pytest.fixture
def provider():
    return StubProvider()
