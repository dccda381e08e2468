"""
Third-party integrations exposed to members and staff: voice sessions,
weather, currency conversion and web crawling.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query

from aurelia.core.security import UserContext, require_admin_user, require_authenticated_user
from aurelia.schemas.integrations import CrawlSearchRequest, CrawlStatusRequest, CrawlUrlRequest, VoiceSessionResponse
from aurelia.services.crawler_service import crawler_service
from aurelia.services.currency_service import currency_service
from aurelia.services.voice_service import voice_service
from aurelia.services.weather_service import weather_service

router = APIRouter()


@router.post("/voice/token", response_model=VoiceSessionResponse)
async def voice_token(user_ctx: UserContext = Depends(require_authenticated_user)) -> VoiceSessionResponse:
    """Signed WebSocket URL for a voice conversation with Orla."""
    return VoiceSessionResponse(**await voice_service.create_session(user_ctx.user_id))


@router.get("/weather", dependencies=[Depends(require_authenticated_user)])
async def weather(
    city: str = Query(..., min_length=1, max_length=128),
    units: str = Query("metric", pattern="^(metric|imperial|standard)$"),
) -> dict[str, Any]:
    return await weather_service.current(city, units=units)


@router.get("/currency")
async def currency(
    amount: float = Query(...),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
) -> dict[str, Any]:
    """Convert an amount between two ISO 4217 currencies."""
    return await currency_service.convert(amount, from_currency, to_currency)


# =============================================================================
# Crawling (staff research tools)
# =============================================================================


@router.post("/crawl/scrape", dependencies=[Depends(require_admin_user)])
async def crawl_scrape(request: CrawlUrlRequest) -> dict[str, Any]:
    return await crawler_service.scrape(request.url, request.options)


@router.post("/crawl/search", dependencies=[Depends(require_admin_user)])
async def crawl_search(request: CrawlSearchRequest) -> dict[str, Any]:
    return await crawler_service.search(request.query, request.options)


@router.post("/crawl/map", dependencies=[Depends(require_admin_user)])
async def crawl_map(request: CrawlUrlRequest) -> dict[str, Any]:
    return await crawler_service.map(request.url, request.options)


@router.post("/crawl/crawl", dependencies=[Depends(require_admin_user)])
async def crawl_site(request: CrawlUrlRequest) -> dict[str, Any]:
    """Start an asynchronous crawl; poll ``/crawl/status`` with the returned id."""
    return await crawler_service.crawl(request.url, request.options)


@router.post("/crawl/status", dependencies=[Depends(require_admin_user)])
async def crawl_status(request: CrawlStatusRequest) -> dict[str, Any]:
    return await crawler_service.crawl_status(request.job_id)
