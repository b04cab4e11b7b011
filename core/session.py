"""
Playback session: the active queue, its position, and repeat/shuffle modes.

Every command, including end-of-track events coming from the transport, is
placed on one mailbox and applied by a single consumer task in arrival order.
A manual skip racing an auto-advance therefore resolves to one of the two
orders, never to a double advance.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from core.exceptions import TransportError
from core.models import RepeatMode, Track
from core.storage import LikedSongs

logger = logging.getLogger(__name__)

Notify = Callable[[str], None]


class AudioTransport(Protocol):
    """Single-track audio output. Raises TransportError when a source cannot load."""

    @property
    def playing(self) -> bool: ...

    async def replace(self, url: str) -> None: ...

    async def play(self) -> None: ...

    async def pause(self) -> None: ...

    async def seek(self, seconds: float) -> None: ...


def _unique_by_id(tracks: Sequence[Track]) -> list[Track]:
    seen = set()
    unique = []
    for t in tracks:
        if t.id not in seen:
            seen.add(t.id)
            unique.append(t)
    return unique


class PlaybackSession:
    def __init__(
        self,
        transport: AudioTransport,
        likes: LikedSongs,
        notify: Optional[Notify] = None,
        rng: Optional[random.Random] = None,
    ):
        self.transport = transport
        self.likes = likes
        self.notify = notify or (lambda message: None)
        self._rng = rng or random.Random()

        self._queue: list[Track] = []
        self._index = -1
        self.repeat_mode = RepeatMode.OFF
        self.shuffle = False
        self.stopped = False

        self._commands: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    # lifecycle

    async def start(self) -> None:
        if self._worker is None:
            self._commands = asyncio.Queue()
            self._worker = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        while not self._commands.empty():
            _, _, future = self._commands.get_nowait()
            if not future.done():
                future.cancel()

    async def __aenter__(self) -> "PlaybackSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    async def _run(self) -> None:
        while True:
            handler, args, future = await self._commands.get()
            if future.cancelled():
                continue
            try:
                result = await handler(*args)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

    async def _submit(self, handler: Callable[..., Awaitable], *args):
        if self._worker is None:
            raise RuntimeError("Playback session is not running")
        future = asyncio.get_running_loop().create_future()
        self._commands.put_nowait((handler, args, future))
        return await future

    # state

    @property
    def queue(self) -> tuple[Track, ...]:
        return tuple(self._queue)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_track(self) -> Optional[Track]:
        if self._index == -1:
            return None
        return self._queue[self._index]

    @property
    def is_playing(self) -> bool:
        return self._index != -1 and self.transport.playing

    # commands

    async def play_track(self, track: Track, playlist: Optional[Sequence[Track]] = None) -> bool:
        """Load and play a track. Returns False if the transport rejected it."""
        return await self._submit(self._play_track, track, playlist)

    async def toggle_play_pause(self) -> None:
        await self._submit(self._toggle_play_pause)

    async def next(self) -> bool:
        return await self._submit(self._skip, 1)

    async def previous(self) -> bool:
        return await self._submit(self._skip, -1)

    async def shuffle_play(self, playlist: Sequence[Track]) -> bool:
        return await self._submit(self._shuffle_play, playlist)

    async def track_finished(self) -> None:
        """End-of-track event from the transport."""
        await self._submit(self._auto_advance)

    async def set_repeat_mode(self, mode: RepeatMode) -> None:
        await self._submit(self._set_modes, RepeatMode(mode), None)

    async def set_shuffle(self, enabled: bool) -> None:
        await self._submit(self._set_modes, None, enabled)

    def toggle_like(self, track: Track) -> bool:
        return self.likes.toggle(track)

    def is_liked(self, track_id: str) -> bool:
        return self.likes.is_liked(track_id)

    @property
    def liked(self) -> tuple[Track, ...]:
        return self.likes.tracks

    # handlers, only ever run by the consumer task

    async def _play_track(self, track: Track, playlist: Optional[Sequence[Track]]) -> bool:
        if playlist is not None:
            new_queue = _unique_by_id(playlist)
            ids = [t.id for t in new_queue]
            if track.id not in ids:
                raise ValueError(f"Track {track.id} is not in the given playlist")
            new_index = ids.index(track.id)
        else:
            ids = [t.id for t in self._queue]
            if track.id in ids:
                new_queue, new_index = self._queue, ids.index(track.id)
            else:
                new_queue, new_index = [track], 0

        try:
            await self.transport.replace(track.playable_url)
        except TransportError as e:
            logger.error(f"Error loading {track.id}: {e}")
            self.notify("Could not play this track")
            return False

        # The transport now holds this track, so the index must point at it
        self._queue = new_queue
        self._index = new_index
        self.stopped = False

        try:
            await self.transport.play()
        except TransportError as e:
            logger.error(f"Error playing {track.id}: {e}")
            self.notify("Could not play this track")
            return False

        logger.info(f"Playing [{new_index + 1}/{len(new_queue)}] {track.artist} - {track.title}")
        return True

    async def _toggle_play_pause(self) -> None:
        if self._index == -1:
            return
        try:
            if self.transport.playing:
                await self.transport.pause()
            else:
                await self.transport.play()
                self.stopped = False
        except TransportError as e:
            logger.error(f"Transport error: {e}")
            self.notify("Playback control failed")

    async def _skip(self, step: int) -> bool:
        # Manual skips wrap whatever the repeat mode
        if not self._queue:
            return False
        target = (self._index + step) % len(self._queue)
        return await self._play_track(self._queue[target], None)

    async def _auto_advance(self) -> None:
        if not self._queue or self._index == -1:
            return

        if self.repeat_mode == RepeatMode.TRACK:
            try:
                await self.transport.seek(0)
                await self.transport.play()
            except TransportError as e:
                logger.error(f"Could not restart track: {e}")
                self.notify("Could not play this track")
            return

        target = self._index + 1
        if target >= len(self._queue):
            if self.repeat_mode != RepeatMode.ALL:
                self.stopped = True
                logger.info("Reached end of queue")
                return
            target = 0
        await self._play_track(self._queue[target], None)

    async def _shuffle_play(self, playlist: Sequence[Track]) -> bool:
        # Only the starting track is random; the queue keeps playlist order
        tracks = _unique_by_id(playlist)
        if not tracks:
            return False
        start = tracks[self._rng.randrange(len(tracks))]
        played = await self._play_track(start, tracks)
        self.shuffle = True
        return played

    async def _set_modes(self, repeat_mode: Optional[RepeatMode], shuffle: Optional[bool]) -> None:
        if repeat_mode is not None:
            self.repeat_mode = repeat_mode
        if shuffle is not None:
            self.shuffle = shuffle
