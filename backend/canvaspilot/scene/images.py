"""Image loading + stock image search for add_image / search_images."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = 200


@dataclass
class ImageInfo:
    url: str
    width: float = DEFAULT_IMAGE_SIZE
    height: float = DEFAULT_IMAGE_SIZE


class ImageLoadError(Exception):
    pass


class ImageLoader(Protocol):
    async def load(self, url: str) -> ImageInfo: ...


class ImageSearch(Protocol):
    async def search(self, query: str, count: int = 1) -> list[str]: ...


class HttpImageLoader:
    """Fetches an image and reads its intrinsic size."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout_s: float = 15.0) -> None:
        self._client = client
        self._timeout_s = timeout_s

    async def load(self, url: str) -> ImageInfo:
        if url.startswith("data:"):
            raise ImageLoadError("Inline data URLs are loaded by the editor, not the server")
        try:
            if self._client is not None:
                resp = await self._client.get(url, timeout=self._timeout_s, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s, follow_redirects=True) as client:
                    resp = await client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageLoadError(f"Failed to fetch image: {e}") from e

        try:
            with Image.open(io.BytesIO(resp.content)) as img:
                width, height = img.size
        except (UnidentifiedImageError, OSError) as e:
            raise ImageLoadError(f"Not a readable image: {url}") from e
        return ImageInfo(url=url, width=width, height=height)


class PexelsSearch:
    BASE_URL = "https://api.pexels.com/v1/search"

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        self.api_key = api_key
        self._client = client

    async def search(self, query: str, count: int = 1) -> list[str]:
        if not self.api_key:
            return []
        params = {"query": query, "per_page": max(1, count)}
        data = await _get_json(self._client, self.BASE_URL, params=params, headers={"Authorization": self.api_key})
        urls = []
        for photo in (data or {}).get("photos", []):
            src = photo.get("src") or {}
            url = src.get("large") or src.get("original") or src.get("medium")
            if url:
                urls.append(url)
        return urls[:count]


class PixabaySearch:
    BASE_URL = "https://pixabay.com/api/"

    def __init__(self, api_key: str, client: httpx.AsyncClient | None = None) -> None:
        self.api_key = api_key
        self._client = client

    async def search(self, query: str, count: int = 1) -> list[str]:
        if not self.api_key:
            return []
        # Pixabay rejects per_page < 3
        params = {"key": self.api_key, "q": query, "per_page": max(3, count), "image_type": "photo"}
        data = await _get_json(self._client, self.BASE_URL, params=params)
        urls = [hit.get("largeImageURL") or hit.get("webformatURL") for hit in (data or {}).get("hits", [])]
        return [u for u in urls if u][:count]


class FallbackImageSearch:
    """Tries each backend in order; the first non-empty result wins."""

    def __init__(self, backends: list[ImageSearch]) -> None:
        self.backends = backends

    async def search(self, query: str, count: int = 1) -> list[str]:
        for backend in self.backends:
            urls = await backend.search(query, count)
            if urls:
                return urls
            logger.info("Image search %s returned nothing for %r", type(backend).__name__, query)
        return []


async def _get_json(
    client: httpx.AsyncClient | None,
    url: str,
    *,
    params: dict,
    headers: dict | None = None,
) -> dict | None:
    try:
        if client is not None:
            resp = await client.get(url, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=15.0) as owned:
                resp = await owned.get(url, params=params, headers=headers)
        if resp.status_code == 429:
            logger.warning("Image search rate limited by %s", url)
            return None
        resp.raise_for_status()
        return resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Image search request to %s failed: %s", url, e)
        return None
