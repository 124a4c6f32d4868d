from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from webvault.config import settings
from webvault.services.worker import ArchivalWorker, build_worker

logger = logging.getLogger(__name__)


def create_app(worker: ArchivalWorker | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.worker.config.worker_autostart:
            app.state.worker.start()
        yield
        await app.state.worker.stop()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.worker = worker or build_worker(settings)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/worker/status")
    async def worker_status(request: Request):
        w: ArchivalWorker = request.app.state.worker
        return {"running": w.running, "poll_interval": w.poll_interval}

    @app.post("/jobs/process")
    async def process_job(request: Request):
        """Run one worker tick on demand."""
        w: ArchivalWorker = request.app.state.worker
        try:
            job = await w.run_once()
        except Exception as exc:
            logger.exception("Error processing job")
            return JSONResponse(
                {"error": "Failed to process job", "message": str(exc)[:250]},
                status_code=500,
            )
        if job is None:
            return {"message": "No jobs to process"}
        job = await w.repository.get_job(job.id)
        return {"message": "Job processed", "job_id": job.id, "status": job.status.value, "error": job.error}

    return app


logging.basicConfig(level=settings.log_level)
app = create_app()
