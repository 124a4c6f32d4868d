from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SnapshotStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Website:
    id: str
    domain: str
    original_url: str
    created_at: datetime
    updated_at: datetime
    snapshot_ids: list[str] = field(default_factory=list)


@dataclass
class Job:
    id: str
    url: str
    website_id: str
    status: JobStatus
    created_at: datetime
    error: str | None = None
    processed_at: datetime | None = None


@dataclass
class Snapshot:
    id: str
    website_id: str
    job_id: str
    path: str
    status: SnapshotStatus
    storage_path: str           # object-store prefix owned by this snapshot
    entrypoint: str
    created_at: datetime
    updated_at: datetime
    error: str | None = None


@dataclass
class RenderMetadata:
    title: str = ""
    description: str = ""
    status_code: int | None = None
    source_url: str = ""
    error: str | None = None


@dataclass
class RenderResult:
    html: str | None
    raw_html: str | None
    screenshot_url: str | None
    metadata: RenderMetadata

    @property
    def best_html(self) -> str | None:
        return self.raw_html or self.html


@dataclass
class AssetOutcome:
    source_url: str
    hashed_name: str
    ok: bool
    error: str | None = None

    @property
    def relative_path(self) -> str:
        return f"_assets/{self.hashed_name}"


@dataclass
class AssetSummary:
    html: str
    outcomes: list[AssetOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)
