"""
Record repository: Job, Website and Snapshot rows in Postgres, reached through
Supabase's PostgREST API.

Every status change is a PATCH filtered on the expected current status, so the
database applies it as a single compare-and-swap. A PATCH that matches no row
means another worker got there first (claim) or the transition is illegal.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import httpx

from webvault.config import Settings, settings as default_settings
from webvault.errors import InvalidTransitionError, NotFoundError, RepositoryError, ValidationError
from webvault.models import Job, JobStatus, Snapshot, SnapshotStatus, Website
from webvault.storage.base import snapshot_prefix
from webvault.utils import extract_path, is_valid_url, normalize_domain, utcnow

logger = logging.getLogger(__name__)

CLAIM_ATTEMPTS = 5
ENTRYPOINT = "index.html"


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _website(row: dict, snapshot_ids: list[str]) -> Website:
    return Website(
        id=row["id"],
        domain=row["domain"],
        original_url=row["original_url"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
        snapshot_ids=snapshot_ids,
    )


def _job(row: dict) -> Job:
    return Job(
        id=row["id"],
        url=row["url"],
        website_id=row["website_id"],
        status=JobStatus(row["status"]),
        created_at=_dt(row["created_at"]),
        error=row.get("error"),
        processed_at=_dt(row.get("processed_at")),
    )


def _snapshot(row: dict) -> Snapshot:
    return Snapshot(
        id=row["id"],
        website_id=row["website_id"],
        job_id=row["job_id"],
        path=row["path"],
        status=SnapshotStatus(row["status"]),
        storage_path=row["storage_path"],
        entrypoint=row["entrypoint"],
        created_at=_dt(row["created_at"]),
        updated_at=_dt(row["updated_at"]),
        error=row.get("error"),
    )


class RecordRepository:
    def __init__(self, config: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or default_settings
        self._client = client
        self._headers = {
            "apikey": self.config.supabase_key,
            "Authorization": f"Bearer {self.config.supabase_key}",
            "Accept": "application/json",
        }

    @asynccontextmanager
    async def _http(self):
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            yield client

    def _rest_url(self, table: str) -> str:
        return f"{self.config.rest_base}/{table}"

    # ── low-level PostgREST calls ────────────────────────────────────────────

    async def _select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        params = {k: f"eq.{v}" for k, v in (filters or {}).items()}
        params["select"] = "*"
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        try:
            async with self._http() as client:
                res = await client.get(self._rest_url(table), headers=self._headers, params=params)
                res.raise_for_status()
        except httpx.HTTPError as exc:
            raise RepositoryError(f"select from {table} failed: {exc}") from exc
        return res.json()

    async def _insert(self, table: str, row: dict) -> dict | None:
        """Insert one row. Returns ``None`` on a unique-constraint conflict."""
        headers = {**self._headers, "Content-Type": "application/json", "Prefer": "return=representation"}
        try:
            async with self._http() as client:
                res = await client.post(self._rest_url(table), headers=headers, json=row)
                if res.status_code == 409:
                    return None
                res.raise_for_status()
        except httpx.HTTPError as exc:
            raise RepositoryError(f"insert into {table} failed: {exc}") from exc
        rows = res.json()
        return rows[0] if rows else row

    async def _update(self, table: str, filters: dict[str, Any], values: dict) -> list[dict]:
        params = {k: f"eq.{v}" for k, v in filters.items()}
        headers = {**self._headers, "Content-Type": "application/json", "Prefer": "return=representation"}
        try:
            async with self._http() as client:
                res = await client.patch(self._rest_url(table), headers=headers, params=params, json=values)
                res.raise_for_status()
        except httpx.HTTPError as exc:
            raise RepositoryError(f"update of {table} failed: {exc}") from exc
        return res.json()

    # ── websites & jobs ──────────────────────────────────────────────────────

    async def get_or_create_website(self, url: str) -> Website:
        domain = normalize_domain(url)
        rows = await self._select("websites", {"domain": domain}, limit=1)
        if not rows:
            now = utcnow().isoformat()
            created = await self._insert("websites", {
                "id": str(uuid.uuid4()),
                "domain": domain,
                "original_url": url,
                "created_at": now,
                "updated_at": now,
            })
            if created is not None:
                logger.info("Created website %s for domain %s", created["id"], domain)
                return _website(created, [])
            # Lost the race to a concurrent insert on the unique domain index.
            rows = await self._select("websites", {"domain": domain}, limit=1)
            if not rows:
                raise RepositoryError(f"website for {domain} vanished after conflict")
        return await self.get_website(rows[0]["id"])

    async def enqueue_job(self, url: str) -> Job:
        url = url.strip()
        if not is_valid_url(url):
            raise ValidationError(f"Invalid URL: {url!r}; only http and https are allowed")
        website = await self.get_or_create_website(url)
        row = await self._insert("jobs", {
            "id": str(uuid.uuid4()),
            "url": url,
            "website_id": website.id,
            "status": JobStatus.PENDING.value,
            "created_at": utcnow().isoformat(),
        })
        return _job(row)

    async def _try_claim(self, job_id: str) -> Job | None:
        rows = await self._update(
            "jobs",
            {"id": job_id, "status": JobStatus.PENDING.value},
            {"status": JobStatus.PROCESSING.value, "processed_at": utcnow().isoformat()},
        )
        return _job(rows[0]) if rows else None

    async def claim_next_job(self) -> Job | None:
        """Atomically move the oldest pending job to processing and return it."""
        for _ in range(CLAIM_ATTEMPTS):
            rows = await self._select(
                "jobs", {"status": JobStatus.PENDING.value}, order="created_at.asc,id.asc", limit=1
            )
            if not rows:
                return None
            job = await self._try_claim(rows[0]["id"])
            if job is not None:
                return job
            logger.debug("Job %s was claimed by another worker", rows[0]["id"])
        return None

    async def _transition_job(self, job_id: str, status: JobStatus, error: str | None = None) -> Job:
        values: dict[str, Any] = {"status": status.value}
        if error is not None:
            values["error"] = error
        rows = await self._update("jobs", {"id": job_id, "status": JobStatus.PROCESSING.value}, values)
        if not rows:
            raise InvalidTransitionError(f"job {job_id} is not processing; cannot mark {status.value}")
        return _job(rows[0])

    async def complete_job(self, job_id: str) -> Job:
        return await self._transition_job(job_id, JobStatus.COMPLETED)

    async def fail_job(self, job_id: str, error: str) -> Job:
        return await self._transition_job(job_id, JobStatus.FAILED, error)

    async def get_job(self, job_id: str) -> Job:
        rows = await self._select("jobs", {"id": job_id}, limit=1)
        if not rows:
            raise NotFoundError(f"job {job_id} not found")
        return _job(rows[0])

    # ── snapshots ────────────────────────────────────────────────────────────

    async def create_snapshot(self, job: Job) -> Snapshot:
        snapshot_id = str(uuid.uuid4())
        now = utcnow().isoformat()
        row = await self._insert("snapshots", {
            "id": snapshot_id,
            "website_id": job.website_id,
            "job_id": job.id,
            "path": extract_path(job.url),
            "status": SnapshotStatus.PROCESSING.value,
            "storage_path": snapshot_prefix(snapshot_id),
            "entrypoint": ENTRYPOINT,
            "created_at": now,
            "updated_at": now,
        })
        if row is None:
            raise RepositoryError(f"snapshot id collision for {snapshot_id}")
        return _snapshot(row)

    async def _transition_snapshot(
        self, snapshot_id: str, status: SnapshotStatus, error: str | None = None
    ) -> Snapshot:
        values: dict[str, Any] = {"status": status.value, "updated_at": utcnow().isoformat()}
        if error is not None:
            values["error"] = error
        rows = await self._update(
            "snapshots", {"id": snapshot_id, "status": SnapshotStatus.PROCESSING.value}, values
        )
        if not rows:
            raise InvalidTransitionError(f"snapshot {snapshot_id} is not processing; cannot mark {status.value}")
        return _snapshot(rows[0])

    async def complete_snapshot(self, snapshot_id: str) -> Snapshot:
        return await self._transition_snapshot(snapshot_id, SnapshotStatus.COMPLETED)

    async def fail_snapshot(self, snapshot_id: str, error: str) -> Snapshot:
        return await self._transition_snapshot(snapshot_id, SnapshotStatus.FAILED, error)

    async def get_snapshot(self, snapshot_id: str) -> Snapshot:
        rows = await self._select("snapshots", {"id": snapshot_id}, limit=1)
        if not rows:
            raise NotFoundError(f"snapshot {snapshot_id} not found")
        return _snapshot(rows[0])

    # ── linkage ──────────────────────────────────────────────────────────────

    async def link_snapshot(self, snapshot: Snapshot) -> None:
        current = await self.get_snapshot(snapshot.id)
        if current.status is not SnapshotStatus.COMPLETED:
            raise InvalidTransitionError(f"snapshot {snapshot.id} is {current.status.value}; only completed snapshots are linked")
        await self._insert("website_snapshots", {
            "website_id": current.website_id,
            "snapshot_id": current.id,
            "linked_at": utcnow().isoformat(),
        })
        await self._update("websites", {"id": current.website_id}, {"updated_at": utcnow().isoformat()})

    async def get_website(self, website_id: str) -> Website:
        rows = await self._select("websites", {"id": website_id}, limit=1)
        if not rows:
            raise NotFoundError(f"website {website_id} not found")
        links = await self._select("website_snapshots", {"website_id": website_id}, order="linked_at.asc")
        return _website(rows[0], [link["snapshot_id"] for link in links])
