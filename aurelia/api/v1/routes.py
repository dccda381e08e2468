from fastapi import APIRouter

from aurelia.api.v1.endpoints import (
    admin,
    auth,
    concierge,
    contact,
    credits,
    integrations,
    leads,
    notifications,
    partners,
    payments,
    requests,
    webhooks,
)

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(leads.router, prefix="/leads", tags=["leads"])
api_router.include_router(credits.router, prefix="/credits", tags=["credits"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(requests.router, prefix="/requests", tags=["service requests"])
api_router.include_router(partners.router, prefix="/partners", tags=["partners"])
api_router.include_router(concierge.router, prefix="/concierge", tags=["concierge"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
api_router.include_router(integrations.router, prefix="/integrations", tags=["integrations"])
api_router.include_router(contact.router, prefix="/contact", tags=["contact"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
