import json
import logging
import os
import threading
from typing import Any, Callable

from pydantic import ValidationError

from core.models import Track

logger = logging.getLogger(__name__)

LIKED_SONGS_KEY = "LIKED_SONGS"
DOWNLOADS_KEY = "DOWNLOADED_SONGS"
RECENT_SEARCHES_KEY = "RECENT_SEARCHES"


class JsonStore:
    """Key -> JSON blob persistence backed by a single JSON file."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.error(f"Could not read {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._save(data)

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write one key while holding the store lock. Returns the new value."""
        with self._lock:
            data = self._load()
            value = fn(data.get(key, default))
            data[key] = value
            self._save(data)
            return value


def parse_tracks(items: Any, key: str = "") -> list[Track]:
    """Validate stored track dicts, skipping entries that no longer validate."""
    tracks = []
    for item in items or []:
        try:
            tracks.append(Track.model_validate(item))
        except ValidationError as e:
            logger.warning(f"Dropping malformed entry under {key}: {e.error_count()} errors")
    return tracks


def load_tracks(store: JsonStore, key: str) -> list[Track]:
    return parse_tracks(store.get(key, []), key)


def save_tracks(store: JsonStore, key: str, tracks: list[Track]) -> None:
    store.set(key, [t.model_dump() for t in tracks])


class LikedSongs:
    """Liked tracks. The store is the source of truth; nothing is cached here."""

    def __init__(self, store: JsonStore):
        self.store = store

    @property
    def tracks(self) -> tuple[Track, ...]:
        return tuple(load_tracks(self.store, LIKED_SONGS_KEY))

    def is_liked(self, track_id: str) -> bool:
        return any(t.id == track_id for t in self.tracks)

    def toggle(self, track: Track) -> bool:
        """Like or unlike a track. Returns the new liked state."""
        liked = False

        def flip(items):
            nonlocal liked
            current = parse_tracks(items, LIKED_SONGS_KEY)
            if any(t.id == track.id for t in current):
                updated = [t for t in current if t.id != track.id]
            else:
                updated = [*current, track]
                liked = True
            return [t.model_dump() for t in updated]

        self.store.update(LIKED_SONGS_KEY, flip, [])
        return liked


class RecentSearches:
    def __init__(self, store: JsonStore, limit: int = 10):
        self.store = store
        self.limit = limit

    def items(self) -> list[str]:
        return [s for s in self.store.get(RECENT_SEARCHES_KEY, []) or [] if isinstance(s, str)]

    def add(self, term: str) -> list[str]:
        if not term or not term.strip():
            return self.items()

        def push(items):
            previous = [s for s in items or [] if isinstance(s, str) and s != term]
            return [term, *previous][: self.limit]

        return self.store.update(RECENT_SEARCHES_KEY, push, [])

    def clear(self) -> None:
        self.store.remove(RECENT_SEARCHES_KEY)
