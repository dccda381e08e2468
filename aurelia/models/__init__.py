"""Database models for member accounts, credits, messaging, leads and operations."""

from aurelia.models.audit import AuditLog, LoginAttempt
from aurelia.models.base import Base
from aurelia.models.conversation import ConciergeMessage, Conversation, SMSMessage
from aurelia.models.credits import CreditTransaction, UserCredits
from aurelia.models.lead import LeadScore, VIPAlert
from aurelia.models.notification import Notification
from aurelia.models.partner import PartnerCommission, PartnerProspect
from aurelia.models.service_request import REQUEST_STATUSES, REQUEST_TRANSITIONS, CalendarEvent, ServiceRequest
from aurelia.models.uptime import Incident, UptimeCheck
from aurelia.models.user import User
from aurelia.models.webhook import ContactSubmission, WebhookEndpoint

__all__ = [
    "REQUEST_STATUSES",
    "REQUEST_TRANSITIONS",
    "AuditLog",
    "Base",
    "CalendarEvent",
    "ConciergeMessage",
    "ContactSubmission",
    "Conversation",
    "CreditTransaction",
    "Incident",
    "LeadScore",
    "LoginAttempt",
    "Notification",
    "PartnerCommission",
    "PartnerProspect",
    "SMSMessage",
    "ServiceRequest",
    "UptimeCheck",
    "User",
    "UserCredits",
    "VIPAlert",
    "WebhookEndpoint",
]
