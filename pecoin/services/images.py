"""Server-side cache of small NFT images plus proxy URL helpers."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from urllib.parse import urlencode, urlparse

import httpx
from pydantic import BaseModel

from pecoin.api.models import ImageResult
from pecoin.services.cache import TTLCache

log = logging.getLogger(__name__)

PLACEHOLDER_PATH = "/images/nft-placeholder.png"
PROXY_PATH = "/api/nft-image"
USER_AGENT = "PEcoin-Dashboard/1.0"

_IMAGE_EXT = re.compile(r"\.(jpg|jpeg|png|gif|webp|svg)$")


class CachedImage(BaseModel):
    content: bytes
    content_type: str


class ImageCacheStats(BaseModel):
    total_images: int = 0
    total_bytes: int = 0
    avg_age_seconds: int = 0


def _valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_image_url(url: str) -> bool:
    """True when the URL path ends in a known image extension."""
    if not url or not _valid_url(url):
        return False
    return bool(_IMAGE_EXT.search(urlparse(url).path.lower()))


def proxied_image_url(
    url: str | None,
    width: int | None = None,
    height: int | None = None,
    quality: int | None = None,
) -> str:
    """Route an external image through the caching proxy endpoint."""
    if not url:
        return PLACEHOLDER_PATH
    if url.startswith("/"):
        return url
    if not _valid_url(url):
        return PLACEHOLDER_PATH
    params: dict[str, str | int] = {"url": url}
    for name, value in (("w", width), ("h", height), ("q", quality)):
        if value:
            params[name] = value
    return f"{PROXY_PATH}?{urlencode(params)}"


class ImageCache:
    """FIFO cache of downloaded image bytes keyed by origin URL.

    Responses at or above ``max_bytes`` are served once and never stored.
    Images at a fixed URL are treated as immutable, so there is no
    invalidation hook beyond the TTL.
    """

    def __init__(
        self,
        ttl: float = 60 * 60,
        max_entries: int = 100,
        max_bytes: int = 2 * 1024 * 1024,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.max_bytes = max_bytes
        self.cache: TTLCache[CachedImage] = TTLCache(ttl, max_entries=max_entries, clock=clock)
        kwargs = {
            "timeout": timeout,
            "follow_redirects": True,
            "headers": {"User-Agent": USER_AGENT},
        }
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def close(self) -> None:
        await self._client.aclose()

    def get(self, url: str) -> CachedImage | None:
        return self.cache.get(url)

    async def fetch(self, url: str) -> ImageResult:
        """Serve from cache, else download. Never raises; failures yield the placeholder."""
        if not url or not _valid_url(url):
            return ImageResult(status="PLACEHOLDER", placeholder_path=PLACEHOLDER_PATH, error="invalid url")

        cached = self.cache.get(url)
        if cached is not None:
            log.debug("Image cache HIT: %s", url)
            return ImageResult(status="HIT", content=cached.content, content_type=cached.content_type)

        log.debug("Image cache MISS: %s", url)
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("Image fetch failed for %s: %s", url, exc)
            return ImageResult(status="PLACEHOLDER", placeholder_path=PLACEHOLDER_PATH, error=str(exc))

        content_type = response.headers.get("content-type", "image/jpeg")
        if not content_type.startswith("image/"):
            log.warning("Not an image (%s): %s", content_type, url)
            return ImageResult(
                status="PLACEHOLDER",
                placeholder_path=PLACEHOLDER_PATH,
                error=f"not an image: {content_type}",
            )

        content = response.content
        if len(content) < self.max_bytes:
            self.cache.set(url, CachedImage(content=content, content_type=content_type))
        else:
            log.info("Image too large to cache (%d bytes): %s", len(content), url)
        return ImageResult(status="MISS", content=content, content_type=content_type)

    def stats(self) -> ImageCacheStats:
        entries = list(self.cache.items())
        if not entries:
            return ImageCacheStats()
        return ImageCacheStats(
            total_images=len(entries),
            total_bytes=sum(len(img.content) for _, img, _ in entries),
            avg_age_seconds=round(sum(age for _, _, age in entries) / len(entries)),
        )

    def clear(self) -> None:
        self.cache.clear()
