"""
Public contact form.
"""

from fastapi import APIRouter, status

from aurelia.schemas.webhooks import ContactFormRequest
from aurelia.services.lead_service import lead_service
from aurelia.services.webhook_service import webhook_service

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_contact(request: ContactFormRequest) -> dict:
    """
    Store a contact form submission and relay it to automation webhooks.

    When the visitor's ``session_id`` is known the submission carries the
    session's current lead score.
    """
    lead_score = None
    if request.session_id:
        scored = await lead_service.track_event(request.session_id, "form_interaction", email=request.email)
        lead_score = scored["score"]

    contact = await webhook_service.submit_contact(
        name=request.name,
        email=request.email,
        message=request.message,
        phone=request.phone,
        source=request.source,
        lead_score=lead_score,
    )
    return {"success": True, "id": contact.id}
