from __future__ import annotations

import json
import uuid

import httpx
import pytest

from webvault.config import Settings
from webvault.repository import RecordRepository
from webvault.services.renderer import FirecrawlRenderer
from webvault.services.worker import ArchivalWorker
from webvault.storage.supabase import SupabaseStorage

SUPABASE_HOST = "sb.test"
FIRECRAWL_URL = "https://fc.test/v2/scrape"

UNIQUE_KEYS = {
    "websites": [("id",), ("domain",)],
    "jobs": [("id",)],
    "snapshots": [("id",), ("storage_path",)],
    "website_snapshots": [("website_id", "snapshot_id")],
}


class FakeBackend:
    """In-memory Supabase (PostgREST + Storage), Firecrawl and static web."""

    def __init__(self, bucket: str):
        self.bucket = bucket
        self.tables: dict[str, list[dict]] = {name: [] for name in UNIQUE_KEYS}
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.web: dict[str, tuple[int, bytes]] = {}
        self.render_status = 200
        self.render_body: object = {"success": False}
        self.render_requests: list[dict] = []
        self.fail_upload_suffixes: tuple[str, ...] = ()
        self.fail_delete = False

    # ── seeding helpers ──────────────────────────────────────────────────────

    def seed_job(self, url: str, created_at: str, status: str = "pending") -> dict:
        website = {
            "id": str(uuid.uuid4()),
            "domain": f"{uuid.uuid4().hex[:8]}.test",
            "original_url": url,
            "created_at": created_at,
            "updated_at": created_at,
        }
        self.tables["websites"].append(website)
        job = {
            "id": str(uuid.uuid4()),
            "url": url,
            "website_id": website["id"],
            "status": status,
            "error": None,
            "created_at": created_at,
            "processed_at": None,
        }
        self.tables["jobs"].append(job)
        return job

    def keys_under(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix.rstrip("/") + "/"))

    # ── transport ────────────────────────────────────────────────────────────

    def handle(self, request: httpx.Request) -> httpx.Response:
        if str(request.url).split("?")[0] == FIRECRAWL_URL:
            return self._firecrawl(request)
        if request.url.host != SUPABASE_HOST:
            status, body = self.web.get(str(request.url), (404, b"not found"))
            return httpx.Response(status, content=body)
        path = request.url.path
        if path.startswith("/rest/v1/"):
            return self._rest(request, path[len("/rest/v1/"):])
        if path.startswith("/storage/v1/"):
            return self._storage(request, path[len("/storage/v1/"):])
        return httpx.Response(404)

    def _firecrawl(self, request: httpx.Request) -> httpx.Response:
        self.render_requests.append({"headers": dict(request.headers), "json": json.loads(request.content)})
        if isinstance(self.render_body, (dict, list)):
            return httpx.Response(self.render_status, json=self.render_body)
        return httpx.Response(self.render_status, content=str(self.render_body).encode())

    @staticmethod
    def _filters(request: httpx.Request) -> dict[str, str]:
        out = {}
        for key, value in request.url.params.multi_items():
            if key in {"select", "order", "limit"}:
                continue
            assert value.startswith("eq."), value
            out[key] = value[3:]
        return out

    @staticmethod
    def _matches(row: dict, filters: dict[str, str]) -> bool:
        return all(str(row.get(k)) == v for k, v in filters.items())

    def _rest(self, request: httpx.Request, table: str) -> httpx.Response:
        rows = self.tables[table]
        if request.method == "GET":
            found = [dict(r) for r in rows if self._matches(r, self._filters(request))]
            order = request.url.params.get("order")
            if order:
                for term in reversed(order.split(",")):
                    column, _, direction = term.partition(".")
                    found.sort(key=lambda r: str(r.get(column)), reverse=direction == "desc")
            limit = request.url.params.get("limit")
            if limit is not None:
                found = found[: int(limit)]
            return httpx.Response(200, json=found)
        if request.method == "POST":
            row = json.loads(request.content)
            for columns in UNIQUE_KEYS[table]:
                if any(all(r.get(c) == row.get(c) for c in columns) for r in rows):
                    return httpx.Response(409, json={"code": "23505", "message": "duplicate key"})
            rows.append(dict(row))
            return httpx.Response(201, json=[dict(row)])
        if request.method == "PATCH":
            values = json.loads(request.content)
            updated = []
            for row in rows:
                if self._matches(row, self._filters(request)):
                    row.update(values)
                    updated.append(dict(row))
            return httpx.Response(200, json=updated)
        return httpx.Response(405)

    def _storage(self, request: httpx.Request, path: str) -> httpx.Response:
        list_route = f"object/list/{self.bucket}"
        object_route = f"object/{self.bucket}"
        if request.method == "POST" and path == list_route:
            body = json.loads(request.content)
            return httpx.Response(200, json=self._list(body["prefix"], body["offset"], body["limit"]))
        if request.method == "DELETE" and path == object_route:
            if self.fail_delete:
                return httpx.Response(500, json={"error": "boom"})
            removed = []
            for key in json.loads(request.content)["prefixes"]:
                if self.objects.pop(key, None) is not None:
                    removed.append({"name": key})
            return httpx.Response(200, json=removed)
        if request.method == "POST" and path.startswith(object_route + "/"):
            key = path[len(object_route) + 1:]
            if key.endswith(self.fail_upload_suffixes):
                return httpx.Response(500, json={"error": "upload rejected"})
            self.objects[key] = (request.content, request.headers.get("content-type", ""))
            return httpx.Response(200, json={"Key": f"{self.bucket}/{key}"})
        return httpx.Response(404)

    def _list(self, prefix: str, offset: int, limit: int) -> list[dict]:
        entries: dict[str, dict] = {}
        for key in self.keys_under(prefix):
            rest = key[len(prefix.rstrip("/")) + 1:]
            name, _, tail = rest.partition("/")
            entries.setdefault(name, {"name": name, "id": None if tail else str(uuid.uuid4())})
        ordered = [entries[name] for name in sorted(entries)]
        return ordered[offset: offset + limit]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def config() -> Settings:
    return Settings(
        _env_file=None,
        supabase_url=f"https://{SUPABASE_HOST}",
        supabase_key="service-key",
        supabase_bucket="archives",
        firecrawl_api_key="fc-key",
        firecrawl_url=FIRECRAWL_URL,
        worker_poll_interval=0.01,
        asset_concurrency=4,
    )


@pytest.fixture
def fake(config) -> FakeBackend:
    return FakeBackend(config.supabase_bucket)


@pytest.fixture
def http(fake) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake.handle))


@pytest.fixture
def repository(config, http) -> RecordRepository:
    return RecordRepository(config, client=http)


@pytest.fixture
def store(config, http) -> SupabaseStorage:
    return SupabaseStorage(config, client=http)


@pytest.fixture
def renderer(config, http) -> FirecrawlRenderer:
    return FirecrawlRenderer(config, client=http)


@pytest.fixture
def worker(config, repository, renderer, store) -> ArchivalWorker:
    return ArchivalWorker(repository=repository, renderer=renderer, store=store, config=config)


def page(*body: str) -> str:
    return "<!DOCTYPE html><html><head><title>t</title></head><body>" + "".join(body) + "</body></html>"


def render_ok(html: str, screenshot: str | None = None, raw: bool = True) -> dict:
    data = {"metadata": {"title": "Example", "description": "", "statusCode": 200, "sourceURL": "x"}}
    data["rawHtml" if raw else "html"] = html
    if screenshot:
        data["screenshot"] = screenshot
    return {"success": True, "data": data}
