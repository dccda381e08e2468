"""
Pydantic schemas for the third-party integration routes (crawling, voice).
"""

from typing import Any

from pydantic import BaseModel, Field


class CrawlUrlRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    options: dict[str, Any] | None = None


class CrawlSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    options: dict[str, Any] | None = None


class CrawlStatusRequest(BaseModel):
    job_id: str = Field(..., min_length=1, max_length=128)


class VoiceSessionResponse(BaseModel):
    signed_url: str
    agent_id: str
