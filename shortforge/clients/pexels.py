"""Pexels stock media search client.

Searches photos and videos for the topic keywords and returns a mix of
roughly 70% images and 30% video clips. Asset refs are the Pexels download
URLs; the renderer reads them directly.

Usage:
    from shortforge.clients.pexels import PexelsVisualSearch

    search = PexelsVisualSearch(api_key="...")
    assets = await search.find_visuals(["daisy", "garden"], count=24)
    await search.close()
"""

import math

import httpx

from shortforge.schemas.media import VisualAsset
from shortforge.utils.logging import get_logger

log = get_logger(__name__)

PEXELS_PHOTOS_URL = "https://api.pexels.com/v1/search"
PEXELS_VIDEOS_URL = "https://api.pexels.com/videos/search"

# Pexels caps per_page at 80 for both endpoints
MAX_PER_PAGE = 80
PREFERRED_VIDEO_QUALITIES = ("hd", "sd")


def _pick_video_file(video_files: list[dict]) -> dict | None:
    """Prefer an HD or SD rendition; otherwise take the first file listed."""
    for video_file in video_files:
        if video_file.get("quality") in PREFERRED_VIDEO_QUALITIES and video_file.get("link"):
            return video_file
    return video_files[0] if video_files and video_files[0].get("link") else None


class PexelsVisualSearch:
    """Visual search backed by the Pexels photo and video APIs.

    Attributes:
        video_ratio: Share of requested assets fetched as videos
        client: Async HTTP client for making requests
    """

    def __init__(
        self,
        api_key: str,
        video_ratio: float = 0.3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.video_ratio = video_ratio
        self.client = client or httpx.AsyncClient(timeout=30.0)
        self._headers = {"Authorization": api_key}

    async def find_visuals(self, keywords: list[str], count: int) -> list[VisualAsset]:
        """Return up to count assets, images first then videos.

        Raises:
            httpx.HTTPStatusError: If Pexels returns an HTTP error
        """
        if count <= 0:
            return []
        query = " ".join(keywords)
        video_count = min(count, math.ceil(count * self.video_ratio))
        image_count = count - video_count

        images = await self._search_photos(query, image_count) if image_count else []
        videos = await self._search_videos(query, video_count) if video_count else []

        log.info(
            "pexels_search_complete",
            query=query,
            requested=count,
            images=len(images),
            videos=len(videos),
        )
        return images + videos

    async def _search_photos(self, query: str, count: int) -> list[VisualAsset]:
        response = await self.client.get(
            PEXELS_PHOTOS_URL,
            headers=self._headers,
            params={
                "query": query,
                "per_page": min(count, MAX_PER_PAGE),
                "orientation": "landscape",
            },
        )
        response.raise_for_status()

        assets = []
        for photo in response.json().get("photos", []):
            src = photo.get("src") or {}
            url = src.get("large2x") or src.get("original")
            if url:
                assets.append(VisualAsset(kind="image", source_ref=url))
        return assets[:count]

    async def _search_videos(self, query: str, count: int) -> list[VisualAsset]:
        response = await self.client.get(
            PEXELS_VIDEOS_URL,
            headers=self._headers,
            params={
                "query": query,
                "per_page": min(count, MAX_PER_PAGE),
                "orientation": "landscape",
            },
        )
        response.raise_for_status()

        assets = []
        for video in response.json().get("videos", []):
            video_file = _pick_video_file(video.get("video_files") or [])
            if video_file is None:
                continue
            duration = video.get("duration")
            assets.append(
                VisualAsset(
                    kind="video",
                    source_ref=video_file["link"],
                    native_duration_seconds=float(duration) if duration else None,
                )
            )
        return assets[:count]

    async def close(self) -> None:
        await self.client.aclose()
