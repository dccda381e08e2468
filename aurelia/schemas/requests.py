"""
Pydantic schemas for member service requests.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ServiceRequestCreate(BaseModel):
    """
    New service request. The category decides the credit cost
    (``SERVICE_CREDIT_COSTS``).
    """

    category: str = Field(..., max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1, max_length=5000)
    preferred_date: datetime | None = None
    budget_min: int | None = Field(None, ge=0)
    budget_max: int | None = Field(None, ge=0)
    requirements: dict[str, Any] | None = None


class ServiceRequestStatusUpdate(BaseModel):
    status: str = Field(..., max_length=32)
    partner_id: str | None = None
    internal_notes: str | None = Field(None, max_length=5000)
