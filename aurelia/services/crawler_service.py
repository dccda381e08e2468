"""
Web crawling through Firecrawl (scrape, search, map, crawl and crawl status).

Upstream JSON is passed through unchanged so staff tools can use every field
Firecrawl returns.
"""

import logging
from typing import Any

import httpx
from fastapi import HTTPException, status

from aurelia.core.config import settings

logger = logging.getLogger("aurelia.crawler")


def normalize_url(url: str) -> str:
    url = url.strip()
    if not url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="URL is required")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


class CrawlerService:
    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self.transport = transport

    async def _call(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        if not settings.FIRECRAWL_API_KEY:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Firecrawl not configured")
        try:
            async with httpx.AsyncClient(
                base_url=settings.FIRECRAWL_API_URL,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                transport=self.transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=payload,
                    headers={"Authorization": f"Bearer {settings.FIRECRAWL_API_KEY}"},
                )
        except httpx.HTTPError as e:
            logger.error("Firecrawl %s failed: %s", path, e)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Firecrawl unavailable")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            message = data.get("error") or f"Request failed with status {response.status_code}"
            logger.error("Firecrawl %s returned %s: %s", path, response.status_code, message)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=message)
        return data

    async def scrape(self, url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        options = options or {}
        payload = {"url": normalize_url(url), "formats": options.pop("formats", ["markdown"]), **options}
        logger.info("Scraping %s", payload["url"])
        return await self._call("POST", "/v1/scrape", payload)

    async def search(self, query: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        if not query.strip():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")
        options = options or {}
        payload = {"query": query, "limit": options.pop("limit", 10), **options}
        return await self._call("POST", "/v1/search", payload)

    async def map(self, url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = {"url": normalize_url(url), **(options or {})}
        return await self._call("POST", "/v1/map", payload)

    async def crawl(self, url: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        options = options or {}
        payload = {"url": normalize_url(url), "limit": options.pop("limit", 100), **options}
        logger.info("Starting crawl of %s", payload["url"])
        return await self._call("POST", "/v1/crawl", payload)

    async def crawl_status(self, job_id: str) -> dict[str, Any]:
        if not job_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Job ID is required")
        return await self._call("GET", f"/v1/crawl/{job_id}")


# Global instance
crawler_service = CrawlerService()
