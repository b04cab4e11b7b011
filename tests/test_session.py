"""Tests for the playback session: queue moves, repeat modes, shuffle and likes."""

import asyncio
import random

import pytest

from conftest import FakeTransport, make_track
from core.models import RepeatMode
from core.session import PlaybackSession
from core.storage import LikedSongs

TRACKS = [make_track(i) for i in range(3)]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def notices():
    return []


@pytest.fixture
async def session(transport, store, notices):
    async with PlaybackSession(
        transport, LikedSongs(store), notify=notices.append, rng=random.Random(7)
    ) as s:
        yield s


class TestPlayTrack:
    @pytest.mark.anyio
    async def test_idle_before_anything_plays(self, session):
        assert session.current_index == -1
        assert session.current_track is None
        assert not session.is_playing

    @pytest.mark.anyio
    async def test_with_playlist_replaces_queue(self, session, transport):
        assert await session.play_track(TRACKS[1], TRACKS)

        assert session.queue == tuple(TRACKS)
        assert session.current_index == 1
        assert transport.source == TRACKS[1].url
        assert session.is_playing

    @pytest.mark.anyio
    async def test_member_of_current_queue_keeps_queue(self, session):
        await session.play_track(TRACKS[0], TRACKS)
        await session.play_track(TRACKS[2])

        assert session.queue == tuple(TRACKS)
        assert session.current_index == 2

    @pytest.mark.anyio
    async def test_outside_current_queue_starts_single_track_queue(self, session):
        await session.play_track(TRACKS[0], TRACKS)
        stranger = make_track(99)
        await session.play_track(stranger)

        assert session.queue == (stranger,)
        assert session.current_index == 0

    @pytest.mark.anyio
    async def test_prefers_local_file(self, session, transport):
        downloaded = TRACKS[0].model_copy(update={"local_uri": "file:///music/vid0.mp3"})
        await session.play_track(downloaded)
        assert transport.source == "file:///music/vid0.mp3"

    @pytest.mark.anyio
    async def test_duplicate_ids_collapse_in_queue(self, session):
        await session.play_track(TRACKS[0], [TRACKS[0], TRACKS[1], TRACKS[0]])
        assert [t.id for t in session.queue] == ["vid0", "vid1"]

    @pytest.mark.anyio
    async def test_track_missing_from_playlist_is_rejected(self, session, transport):
        with pytest.raises(ValueError):
            await session.play_track(make_track(99), TRACKS)
        assert transport.replaced == []
        assert session.current_index == -1

    @pytest.mark.anyio
    async def test_transport_failure_keeps_previous_state(self, store, notices):
        transport = FakeTransport(fail_urls={TRACKS[2].url})
        async with PlaybackSession(transport, LikedSongs(store), notify=notices.append) as session:
            await session.play_track(TRACKS[0], TRACKS)

            assert await session.play_track(TRACKS[2]) is False

            assert session.current_index == 0
            assert session.queue == tuple(TRACKS)
            assert notices == ["Could not play this track"]

    @pytest.mark.anyio
    async def test_play_failure_after_load_points_at_loaded_track(self, store, notices):
        transport = FakeTransport(fail_play_urls={TRACKS[2].url})
        async with PlaybackSession(transport, LikedSongs(store), notify=notices.append) as session:
            await session.play_track(TRACKS[0], TRACKS)

            assert await session.play_track(TRACKS[2]) is False

            assert transport.source == TRACKS[2].url
            assert session.current_index == 2
            assert session.current_track == TRACKS[2]
            assert not session.is_playing
            assert notices == ["Could not play this track"]

            await session.next()
            assert session.current_index == 0


class TestTransport:
    @pytest.mark.anyio
    async def test_toggle_is_noop_when_idle(self, session, transport):
        await session.toggle_play_pause()
        assert not transport.playing

    @pytest.mark.anyio
    async def test_toggle_pauses_and_resumes(self, session, transport):
        await session.play_track(TRACKS[0])
        await session.toggle_play_pause()
        assert not transport.playing
        await session.toggle_play_pause()
        assert transport.playing


class TestSkip:
    @pytest.mark.anyio
    async def test_next_wraps_to_start(self, session):
        await session.play_track(TRACKS[2], TRACKS)
        await session.next()
        assert session.current_index == 0

    @pytest.mark.anyio
    async def test_previous_wraps_to_end(self, session):
        await session.play_track(TRACKS[0], TRACKS)
        await session.previous()
        assert session.current_index == 2

    @pytest.mark.anyio
    async def test_manual_skip_wraps_even_with_repeat_off(self, session):
        await session.set_repeat_mode(RepeatMode.OFF)
        await session.play_track(TRACKS[2], TRACKS)
        assert await session.next()
        assert session.current_index == 0

    @pytest.mark.anyio
    async def test_skip_on_empty_queue_is_noop(self, session, transport):
        assert await session.next() is False
        assert await session.previous() is False
        assert transport.replaced == []


class TestAutoAdvance:
    @pytest.mark.anyio
    async def test_advances_to_next_track(self, session, transport):
        await session.play_track(TRACKS[0], TRACKS)
        transport.finish()
        await session.track_finished()

        assert session.current_index == 1
        assert transport.source == TRACKS[1].url
        assert transport.playing

    @pytest.mark.anyio
    async def test_repeat_track_restarts_same_track(self, session, transport):
        await session.set_repeat_mode(RepeatMode.TRACK)
        await session.play_track(TRACKS[1], TRACKS)
        transport.finish()
        await session.track_finished()

        assert session.current_index == 1
        assert transport.position == 0
        assert transport.seeks == [0]
        assert transport.playing

    @pytest.mark.anyio
    async def test_repeat_all_wraps_at_end(self, session):
        await session.set_repeat_mode(RepeatMode.ALL)
        await session.play_track(TRACKS[2], TRACKS)
        await session.track_finished()
        assert session.current_index == 0

    @pytest.mark.anyio
    async def test_repeat_off_stops_at_end(self, session, transport):
        await session.play_track(TRACKS[2], TRACKS)
        transport.finish()
        await session.track_finished()

        assert session.current_index == 2
        assert session.stopped
        assert not session.is_playing
        assert transport.source == TRACKS[2].url
        assert transport.replaced == [TRACKS[2].url]

    @pytest.mark.anyio
    async def test_finish_while_idle_is_ignored(self, session, transport):
        await session.track_finished()
        assert session.current_index == -1
        assert transport.replaced == []

    @pytest.mark.anyio
    async def test_skip_and_end_of_track_apply_one_after_the_other(self, session, transport):
        """A racing skip and auto-advance each move the queue exactly once."""
        await session.play_track(TRACKS[0], TRACKS)
        await asyncio.gather(session.next(), session.track_finished())

        assert session.current_index == 2
        assert len(transport.replaced) == 3


class TestShuffle:
    @pytest.mark.anyio
    async def test_empty_playlist_is_noop(self, session, transport):
        assert await session.shuffle_play([]) is False
        assert not session.shuffle
        assert transport.replaced == []

    @pytest.mark.anyio
    async def test_random_entry_point_keeps_playlist_order(self, session):
        assert await session.shuffle_play(TRACKS)

        assert session.shuffle
        assert session.queue == tuple(TRACKS)
        assert session.current_track == TRACKS[session.current_index]

    @pytest.mark.anyio
    async def test_next_after_shuffle_follows_queue_order(self, session):
        """Shuffle only picks where playback starts; later skips go in queue order."""
        await session.shuffle_play(TRACKS)
        start = session.current_index

        await session.next()

        assert session.current_index == (start + 1) % len(TRACKS)

    @pytest.mark.anyio
    async def test_entry_point_uses_injected_rng(self, store):
        expected = random.Random(3).randrange(len(TRACKS))
        async with PlaybackSession(FakeTransport(), LikedSongs(store), rng=random.Random(3)) as session:
            await session.shuffle_play(TRACKS)
            assert session.current_index == expected


class TestLikes:
    @pytest.mark.anyio
    async def test_toggle_like_persists(self, session, store):
        assert session.toggle_like(TRACKS[0]) is True
        assert session.is_liked("vid0")
        assert LikedSongs(store).is_liked("vid0")

        assert session.toggle_like(TRACKS[0]) is False
        assert not session.is_liked("vid0")
        assert not LikedSongs(store).is_liked("vid0")

    @pytest.mark.anyio
    async def test_liked_preserves_order(self, session):
        session.toggle_like(TRACKS[2])
        session.toggle_like(TRACKS[0])
        assert [t.id for t in session.liked] == ["vid2", "vid0"]


@pytest.mark.anyio
async def test_commands_require_running_session(transport, store):
    session = PlaybackSession(transport, LikedSongs(store))
    with pytest.raises(RuntimeError):
        await session.next()


class BlockingTransport(FakeTransport):
    """Transport whose replace() waits until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def replace(self, url):
        self.entered.set()
        await self.release.wait()
        await super().replace(url)


@pytest.mark.anyio
async def test_stop_cancels_command_in_progress(store):
    transport = BlockingTransport()
    session = PlaybackSession(transport, LikedSongs(store))
    await session.start()

    pending = asyncio.create_task(session.play_track(TRACKS[0], TRACKS))
    queued = asyncio.create_task(session.next())
    await asyncio.wait_for(transport.entered.wait(), 1)

    await session.stop()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(pending, 1)
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(queued, 1)
    assert session.current_index == -1
