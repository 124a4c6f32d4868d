"""
Asset pipeline — makes a rendered page self-hosting:
  1. finds <link href>, <script src> and <img src> references
  2. copies each referenced file into the snapshot's ``_assets/`` folder
  3. rewrites the reference to the copy

Asset names are ``md5(absolute url) + extension``, so the same reference always
maps to the same file. An asset that cannot be copied keeps its live URL.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import posixpath
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from webvault.config import Settings, settings as default_settings
from webvault.models import AssetOutcome, AssetSummary
from webvault.storage.base import ObjectStore, snapshot_key

logger = logging.getLogger(__name__)

MAX_URL_LENGTH = 2048
DEFAULT_EXTENSION = ".asset"
THUMBNAIL_NAME = "thumbnail.png"

# (tag, attribute) pairs that reference embeddable resources
ASSET_ATTRIBUTES = (("link", "href"), ("script", "src"), ("img", "src"))

SKIPPED_PREFIXES = ("data:", "javascript:", "#", "mailto:", "tel:", "blob:")

MIME_TYPES = {
    ".css": "text/css",
    ".js": "application/javascript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
}


def is_fetchable(value: str | None) -> bool:
    if not value or not value.strip():
        return False
    value = value.strip()
    if len(value) >= MAX_URL_LENGTH:
        return False
    return not value.lower().startswith(SKIPPED_PREFIXES)


def file_extension(url: str) -> str:
    ext = posixpath.splitext(urlparse(url).path)[1]
    return ext or DEFAULT_EXTENSION


def asset_name(url: str) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest() + file_extension(url)


def content_type_for(url: str) -> str:
    return MIME_TYPES.get(file_extension(url).lower(), "application/octet-stream")


def discover_assets(soup: BeautifulSoup, page_url: str) -> dict[str, list[tuple[Tag, str]]]:
    """Map each absolute asset URL to the (element, attribute) pairs using it."""
    found: dict[str, list[tuple[Tag, str]]] = {}
    for tag_name, attr in ASSET_ATTRIBUTES:
        for element in soup.find_all(tag_name, attrs={attr: True}):
            value = element.get(attr)
            if not is_fetchable(value):
                continue
            absolute = urldefrag(urljoin(page_url, value.strip())).url
            if urlparse(absolute).scheme not in {"http", "https"}:
                continue
            found.setdefault(absolute, []).append((element, attr))
    return found


class AssetPipeline:
    def __init__(self, store: ObjectStore, config: Settings | None = None):
        self.store = store
        self.config = config or default_settings

    async def _copy_asset(self, storage_path: str, url: str, semaphore: asyncio.Semaphore) -> AssetOutcome:
        name = asset_name(url)
        async with semaphore:
            try:
                data = await self.store.download(url)
                await self.store.upload(snapshot_key(storage_path, f"_assets/{name}"), data, content_type_for(url))
            except Exception as exc:
                logger.warning("Failed to process asset %s, keeping original URL: %s", url, exc)
                return AssetOutcome(source_url=url, hashed_name=name, ok=False, error=str(exc))
        return AssetOutcome(source_url=url, hashed_name=name, ok=True)

    async def process(self, html: str, storage_path: str, page_url: str) -> AssetSummary:
        soup = BeautifulSoup(html, "lxml")
        references = discover_assets(soup, page_url)

        semaphore = asyncio.Semaphore(max(1, self.config.asset_concurrency))
        outcomes = await asyncio.gather(
            *(self._copy_asset(storage_path, url, semaphore) for url in references)
        )

        for outcome in outcomes:
            if not outcome.ok:
                continue
            for element, attr in references[outcome.source_url]:
                element[attr] = outcome.relative_path

        summary = AssetSummary(html=str(soup), outcomes=list(outcomes))
        if summary.failed:
            logger.info("Asset processing summary: %d successful, %d failed", summary.succeeded, summary.failed)
        else:
            logger.info("Successfully processed %d assets", summary.succeeded)
        return summary

    async def store_screenshot(self, storage_path: str, screenshot_url: str) -> bool:
        try:
            data = await self.store.download(screenshot_url)
            await self.store.upload(snapshot_key(storage_path, THUMBNAIL_NAME), data, "image/png")
        except Exception as exc:
            logger.warning("Failed to store screenshot for %s: %s", storage_path, exc)
            return False
        return True
