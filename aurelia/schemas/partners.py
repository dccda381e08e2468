"""
Pydantic schemas for partner invitations, applications and review.
"""

from typing import Literal

from pydantic import BaseModel, EmailStr, Field


class PartnerInviteRequest(BaseModel):
    company_name: str = Field(..., max_length=255)
    email: EmailStr
    contact_name: str | None = Field(None, max_length=255)
    category: str = Field("other", max_length=64)
    website: str | None = Field(None, max_length=1024)
    description: str | None = Field(None, max_length=5000)
    coverage_regions: list[str] | None = None
    match_score: int | None = Field(None, ge=0, le=100)
    match_reason: str | None = Field(None, max_length=2000)
    subject: str | None = Field(None, max_length=255, description="Custom email subject")
    prospect_id: str | None = Field(None, description="Existing prospect to invite")


class PartnerApplicationRequest(BaseModel):
    """Public partner application form."""

    company_name: str = Field(..., max_length=255)
    email: EmailStr
    category: str = Field("other", max_length=64)
    contact_name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)
    website: str | None = Field(None, max_length=1024)
    description: str | None = Field(None, max_length=5000)
    coverage_regions: list[str] | None = None
    invite_token: str | None = Field(None, max_length=128)


class PartnerReviewRequest(BaseModel):
    status: Literal["approved", "rejected"]
    notes: str | None = Field(None, max_length=2000)
