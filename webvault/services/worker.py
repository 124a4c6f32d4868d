"""
Archival worker: claims one job per tick and drives it to a terminal state.

    claim → snapshot(processing) → render → assets → index.html
          → success: snapshot completed, job completed, snapshot linked
          → failure: snapshot failed, job failed, snapshot prefix deleted
"""
from __future__ import annotations

import asyncio
import logging

from webvault.config import Settings, settings as default_settings
from webvault.errors import InvalidTransitionError
from webvault.models import Job, Snapshot
from webvault.repository import RecordRepository
from webvault.services.assets import AssetPipeline
from webvault.services.renderer import FirecrawlRenderer
from webvault.storage.base import ObjectStore, snapshot_key
from webvault.storage.supabase import SupabaseStorage

logger = logging.getLogger(__name__)


class ArchivalWorker:
    def __init__(
        self,
        repository: RecordRepository,
        renderer: FirecrawlRenderer,
        store: ObjectStore,
        pipeline: AssetPipeline | None = None,
        config: Settings | None = None,
    ):
        self.config = config or default_settings
        self.repository = repository
        self.renderer = renderer
        self.store = store
        self.pipeline = pipeline or AssetPipeline(store, self.config)
        self.poll_interval = self.config.worker_poll_interval
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── lifecycle ────────────────────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            logger.info("Worker is already running")
            return
        self._stopping.clear()
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="archival-worker")
        logger.info("Worker started with %.1fs interval", self.poll_interval)

    async def stop(self) -> None:
        """Stop polling. Returns once the in-flight job, if any, has finished."""
        if not self.running:
            logger.info("Worker is not running")
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Worker stopped")

    def request_stop(self) -> None:
        """Ask the loop to exit after the current tick without waiting for it."""
        self._stopping.set()

    async def run_forever(self) -> None:
        """Poll until ``request_stop`` or ``stop``; returns after the last tick drains."""
        self.start()
        await self._task
        self._task = None

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in worker loop")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    # ── one tick ─────────────────────────────────────────────────────────────

    async def run_once(self) -> Job | None:
        """Claim and process at most one job. Returns the claimed job."""
        async with self._lock:
            job = await self.repository.claim_next_job()
            if job is None:
                return None
            await self.process_job(job)
            return job

    async def process_job(self, job: Job) -> Snapshot | None:
        logger.info("Processing job %s for URL: %s", job.id, job.url)
        snapshot: Snapshot | None = None
        try:
            snapshot = await self.repository.create_snapshot(job)
            logger.info("Created snapshot %s for job %s", snapshot.id, job.id)
            await self._archive(job, snapshot)
            snapshot = await self._finalize_success(job, snapshot)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Job %s failed: %s", job.id, message)
            await self._finalize_failure(job, snapshot, message)
            return None
        logger.info("Successfully completed job %s", job.id)
        return snapshot

    async def _archive(self, job: Job, snapshot: Snapshot) -> None:
        rendered = await self.renderer.render(job.url)
        summary = await self.pipeline.process(rendered.best_html, snapshot.storage_path, job.url)
        await self.store.upload(
            snapshot_key(snapshot.storage_path, snapshot.entrypoint), summary.html, "text/html; charset=utf-8"
        )
        if rendered.screenshot_url:
            await self.pipeline.store_screenshot(snapshot.storage_path, rendered.screenshot_url)

    async def _finalize_success(self, job: Job, snapshot: Snapshot) -> Snapshot:
        snapshot = await self.repository.complete_snapshot(snapshot.id)
        await self.repository.complete_job(job.id)
        await self.repository.link_snapshot(snapshot)
        return snapshot

    async def _finalize_failure(self, job: Job, snapshot: Snapshot | None, message: str) -> None:
        cleanup = snapshot is not None
        if snapshot is not None:
            try:
                await self.repository.fail_snapshot(snapshot.id, message)
            except InvalidTransitionError:
                # Already completed: its objects are live and must be kept.
                logger.error("Snapshot %s already left processing; skipping cleanup", snapshot.id)
                cleanup = False
            except Exception:
                logger.exception("Failed to mark snapshot %s failed", snapshot.id)

        try:
            await self.repository.fail_job(job.id, message)
        except Exception:
            logger.exception("Failed to mark job %s failed", job.id)

        if cleanup:
            await self._cleanup(snapshot)

    async def _cleanup(self, snapshot: Snapshot) -> None:
        try:
            await self.store.delete_by_prefix(snapshot.storage_path)
        except Exception as exc:
            logger.error("Failed to cleanup snapshot %s: %s", snapshot.id, exc)


def build_worker(config: Settings | None = None) -> ArchivalWorker:
    config = config or default_settings
    store = SupabaseStorage(config)
    return ArchivalWorker(
        repository=RecordRepository(config),
        renderer=FirecrawlRenderer(config),
        store=store,
        config=config,
    )
