"""
Supabase Storage adapter: the only code that talks to the object store.

Keys are logical (``snapshots/<id>/index.html``); the adapter places them
under the configured bucket and optional root prefix.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx

from webvault.config import Settings, settings as default_settings
from webvault.errors import StorageError
from webvault.storage.base import ObjectStore

logger = logging.getLogger(__name__)

LIST_PAGE_SIZE = 100
DELETE_BATCH_SIZE = 1000


class SupabaseStorage(ObjectStore):
    name = "supabase"

    def __init__(self, config: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or default_settings
        self.bucket = self.config.supabase_bucket
        self.root = self.config.storage_root_prefix.strip("/")
        self._client = client
        self._headers = {
            "apikey": self.config.supabase_key,
            "Authorization": f"Bearer {self.config.supabase_key}",
        }

    @asynccontextmanager
    async def _http(self):
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.config.request_timeout, follow_redirects=True) as client:
            yield client

    def _full_key(self, key: str) -> str:
        key = key.strip("/")
        return f"{self.root}/{key}" if self.root else key

    def _logical_key(self, full_key: str) -> str:
        if self.root and full_key.startswith(self.root + "/"):
            return full_key[len(self.root) + 1:]
        return full_key

    def _object_url(self, full_key: str) -> str:
        return f"{self.config.storage_base}/object/{self.bucket}/{full_key}"

    async def upload(self, key: str, data: bytes | str, content_type: str = "application/octet-stream") -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        full_key = self._full_key(key)
        headers = {**self._headers, "Content-Type": content_type, "x-upsert": "true"}
        try:
            async with self._http() as client:
                res = await client.post(self._object_url(full_key), headers=headers, content=data)
                res.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to upload file {key}: {exc}") from exc
        logger.debug("Uploaded %s (%d bytes, %s)", full_key, len(data), content_type)

    async def download(self, url: str) -> bytes:
        try:
            async with self._http() as client:
                res = await client.get(url)
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to download file from {url}: {exc}") from exc
        if not res.is_success:
            raise StorageError(f"Failed to download file from {url}: HTTP status {res.status_code}")
        return res.content

    async def _list_page(self, client: httpx.AsyncClient, full_prefix: str, offset: int) -> list[dict]:
        body = {
            "prefix": full_prefix,
            "limit": LIST_PAGE_SIZE,
            "offset": offset,
            "sortBy": {"column": "name", "order": "asc"},
        }
        res = await client.post(
            f"{self.config.storage_base}/object/list/{self.bucket}",
            headers={**self._headers, "Content-Type": "application/json"},
            json=body,
        )
        if res.status_code == 404:
            return []
        res.raise_for_status()
        return res.json() or []

    async def _walk(self, client: httpx.AsyncClient, full_prefix: str) -> list[str]:
        # Listings are one level deep; entries without an id are folders.
        keys: list[str] = []
        offset = 0
        while True:
            page = await self._list_page(client, full_prefix, offset)
            for entry in page:
                path = f"{full_prefix}/{entry['name']}"
                if entry.get("id") is None:
                    keys.extend(await self._walk(client, path))
                else:
                    keys.append(path)
            if len(page) < LIST_PAGE_SIZE:
                return keys
            offset += len(page)

    async def list_keys(self, prefix: str) -> list[str]:
        full_prefix = self._full_key(prefix)
        try:
            async with self._http() as client:
                found = await self._walk(client, full_prefix)
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to list prefix {prefix}: {exc}") from exc
        return [self._logical_key(k) for k in found]

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete every object under ``prefix``. A missing prefix is a no-op."""
        full_prefix = self._full_key(prefix)
        try:
            async with self._http() as client:
                keys = await self._walk(client, full_prefix)
                if not keys:
                    logger.info("No objects found to delete for prefix: %s", prefix)
                    return 0
                for start in range(0, len(keys), DELETE_BATCH_SIZE):
                    batch = keys[start:start + DELETE_BATCH_SIZE]
                    res = await client.request(
                        "DELETE",
                        f"{self.config.storage_base}/object/{self.bucket}",
                        headers={**self._headers, "Content-Type": "application/json"},
                        json={"prefixes": batch},
                    )
                    res.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"Failed to delete folder {prefix}: {exc}") from exc
        logger.info("Deleted %d objects with prefix: %s", len(keys), prefix)
        return len(keys)
