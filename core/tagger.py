import io

import httpx
from mutagen.mp3 import MP3
from mutagen.id3 import TIT2, TPE1, APIC, COMM
from PIL import Image

from core.models import Track


class Tagger:
    def __init__(self, cover_size: int = 600):
        self.cover_size = cover_size

    async def tag_file(self, filepath: str, track: Track) -> None:
        cover_data = await self._fetch_cover_art(track.artwork)

        if filepath.lower().endswith(".mp3"):
            self._tag_mp3(filepath, track, cover_data)

    async def _fetch_cover_art(self, url: str) -> bytes:
        if not url:
            return b""
        async with httpx.AsyncClient(follow_redirects=True) as client:
            resp = await client.get(url)
            resp.raise_for_status()
            img = Image.open(io.BytesIO(resp.content)).convert("RGB")
            # Video thumbnails are 16:9; crop the centre square for cover art
            width, height = img.size
            side = min(width, height)
            left = (width - side) // 2
            top = (height - side) // 2
            img = img.crop((left, top, left + side, top + side))
            img = img.resize((self.cover_size, self.cover_size), Image.LANCZOS)
            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=90)
            return buf.getvalue()

    def _tag_mp3(self, filepath: str, track: Track, cover_data: bytes) -> None:
        audio = MP3(filepath)
        if audio.tags is None:
            audio.add_tags()

        tags = audio.tags
        tags.add(TIT2(encoding=3, text=[track.title]))
        tags.add(TPE1(encoding=3, text=[track.artist]))
        tags.add(COMM(encoding=3, lang="eng", desc="track_id", text=[track.id]))

        if cover_data:
            tags.add(APIC(
                encoding=3,
                mime="image/jpeg",
                type=3,
                desc="Cover",
                data=cover_data,
            ))

        audio.save()
