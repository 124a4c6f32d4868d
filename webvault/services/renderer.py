"""
Firecrawl client. Firecrawl runs the browser; we only ask for the raw HTML,
a full-page screenshot and page metadata.
"""
from __future__ import annotations

import logging

import httpx

from webvault.config import Settings, settings as default_settings
from webvault.errors import ExternalServiceError
from webvault.models import RenderMetadata, RenderResult

logger = logging.getLogger(__name__)

SERVICE = "firecrawl"


class FirecrawlRenderer:
    def __init__(self, config: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.config = config or default_settings
        self._client = client

    def _payload(self, url: str) -> dict:
        return {
            "url": url,
            "formats": ["rawHtml", {"type": "screenshot", "fullPage": True}],
            "onlyMainContent": True,
        }

    async def _post(self, url: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.config.firecrawl_api_key}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return await self._client.post(self.config.firecrawl_url, headers=headers, json=self._payload(url))
        async with httpx.AsyncClient(timeout=self.config.render_timeout) as client:
            return await client.post(self.config.firecrawl_url, headers=headers, json=self._payload(url))

    async def render(self, url: str) -> RenderResult:
        try:
            res = await self._post(url)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Failed to scrape URL {url}: {exc}", SERVICE) from exc

        if not res.is_success:
            raise ExternalServiceError(
                f"Failed to scrape URL {url}: Firecrawl API error {res.status_code} {res.reason_phrase}", SERVICE
            )
        try:
            body = res.json()
        except ValueError as exc:
            raise ExternalServiceError(f"Failed to scrape URL {url}: response is not JSON", SERVICE) from exc

        if not isinstance(body, dict):
            raise ExternalServiceError(f"Failed to scrape URL {url}: unexpected response shape", SERVICE)
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        meta = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
        if body.get("success") is not True:
            reason = meta.get("error") or body.get("error") or "Unknown error"
            raise ExternalServiceError(f"Firecrawl scraping failed for {url}: {reason}", SERVICE)

        screenshot = data.get("screenshot")
        result = RenderResult(
            html=data.get("html") if isinstance(data.get("html"), str) else None,
            raw_html=data.get("rawHtml") if isinstance(data.get("rawHtml"), str) else None,
            screenshot_url=screenshot if isinstance(screenshot, str) and screenshot else None,
            metadata=RenderMetadata(
                title=meta.get("title") or "",
                description=meta.get("description") or "",
                status_code=meta.get("statusCode"),
                source_url=meta.get("sourceURL") or url,
                error=meta.get("error"),
            ),
        )
        if not result.best_html:
            raise ExternalServiceError(
                f"Invalid HTML content received from Firecrawl for {url}; keys: {', '.join(sorted(data))}", SERVICE
            )
        logger.info("Rendered %s (status %s, title %r)", url, result.metadata.status_code, result.metadata.title)
        return result
