"""
Pydantic schemas for automation webhooks and the contact form.
"""

from typing import Any

from pydantic import BaseModel, EmailStr, Field, HttpUrl


class WebhookEndpointCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    url: HttpUrl
    endpoint_type: str = Field("n8n", max_length=32)
    events: list[str] | None = Field(None, description="Subscribed events; defaults to contact_form")
    headers: dict[str, str] | None = None


class WebhookToggleRequest(BaseModel):
    is_active: bool


class WebhookEventRequest(BaseModel):
    """Inbound event from the CRM or an n8n workflow."""

    event: str = Field(..., min_length=1, max_length=64)
    data: dict[str, Any] = Field(default_factory=dict)


class ContactFormRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: str | None = Field(None, max_length=32)
    message: str = Field(..., min_length=1, max_length=5000)
    source: str | None = Field(None, max_length=64)
    session_id: str | None = Field(None, max_length=128, description="Visitor session used for lead scoring")
