"""
Pydantic schemas for visitor tracking, lead scores and VIP alerts.
"""

from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field


class LeadSignalsUpdate(BaseModel):
    """Signal values reported by the marketing site; omitted fields keep their stored value."""

    pages_visited: list[str] | None = Field(None, max_length=200)
    time_on_site: int | None = Field(None, ge=0, description="Seconds")
    scroll_depth: int | None = Field(None, ge=0, le=100, description="Percent of the page scrolled")
    return_visits: int | None = Field(None, ge=0)
    utm_source: str | None = Field(None, max_length=128)
    utm_medium: str | None = Field(None, max_length=128)
    form_interactions: int | None = Field(None, ge=0)
    pricing_page_views: int | None = Field(None, ge=0)
    services_viewed: int | None = Field(None, ge=0)
    trial_started: bool | None = None
    referral_source: str | None = Field(None, max_length=256)


class LeadTrackRequest(BaseModel):
    """Browsing signals for one visitor session; later values overwrite earlier ones."""

    session_id: str = Field(..., min_length=1, max_length=128)
    signals: LeadSignalsUpdate = Field(default_factory=LeadSignalsUpdate)
    email: EmailStr | None = None


class LeadEventRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    event_type: str = Field(..., max_length=64, description="page_view, scroll, time_on_site, form_interaction, ...")
    payload: dict[str, Any] = Field(default_factory=dict)
    email: EmailStr | None = None


class LeadScoreResponse(BaseModel):
    session_id: str
    score: int
    tier: str
    breakdown: dict[str, int]
    is_vip: bool
    alert_type: str | None = None
    should_engage_concierge: bool = False


class ConciergeEngagedRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)


class VIPAlertUpdateRequest(BaseModel):
    status: Literal["new", "contacted", "converted", "dismissed"]
    notes: str | None = Field(None, max_length=2000)
