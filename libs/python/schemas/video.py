"""Video lookup result DTO."""

from __future__ import annotations

from datetime import datetime

from .exercise import CamelModel


class VideoResult(CamelModel):
    video_id: str
    title: str
    thumbnail: str | None = None
    channel: str | None = None
    published_at: datetime | None = None
    url: str
    is_fallback: bool = False
