from __future__ import annotations

from abc import ABC, abstractmethod


class ObjectStore(ABC):
    name: str

    @abstractmethod
    async def upload(self, key: str, data: bytes | str, content_type: str = "application/octet-stream") -> None:
        raise NotImplementedError

    @abstractmethod
    async def download(self, url: str) -> bytes:
        raise NotImplementedError

    @abstractmethod
    async def list_keys(self, prefix: str) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        raise NotImplementedError


def snapshot_prefix(snapshot_id: str) -> str:
    return f"snapshots/{snapshot_id}"


def snapshot_key(storage_path: str, filename: str) -> str:
    return f"{storage_path.rstrip('/')}/{filename}"
