from enum import Enum
from typing import Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict


class RepeatMode(str, Enum):
    OFF = "off"
    TRACK = "track"
    ALL = "all"


class DownloadStatus(str, Enum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETE = "complete"
    FAILED = "failed"


class SearchResult(BaseModel):
    """One search hit as sent over the wire."""
    id: str
    title: str
    artist: str
    artwork: str = ""
    duration: str = ""
    url: str


class Track(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    artist: str
    artwork: str = ""
    duration: str = ""
    url: str
    local_uri: Optional[str] = None  # set once the track is downloaded

    @property
    def playable_url(self) -> str:
        return self.local_uri or self.url

    @classmethod
    def from_result(cls, result: SearchResult, stream_base: str) -> "Track":
        """Build a Track that plays through the gateway's /stream endpoint."""
        stream_url = f"{stream_base.rstrip('/')}/stream?url={quote(result.url, safe='')}"
        return cls(
            id=result.id,
            title=result.title,
            artist=result.artist,
            artwork=result.artwork,
            duration=result.duration,
            url=stream_url,
        )


class DownloadJob(BaseModel):
    track_id: str
    title: str
    status: DownloadStatus = DownloadStatus.PENDING
    progress_pct: float = 0.0
    error: Optional[str] = None
    output_path: Optional[str] = None
