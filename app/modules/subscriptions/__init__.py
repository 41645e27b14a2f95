"""
Subscription management module.

This module relays PRO/PLUS subscriptions to PayPal and keeps the user's
plan in sync through PayPal webhooks.
"""

from .models import UserAccount, SubscriptionStatus, PlanCode, WebhookEventType
from .schemas import SubscriptionLink, WebhookAck
from .paypal import PayPalClient
from .service import SubscriptionService

__all__ = [
    # Models
    "UserAccount",
    "SubscriptionStatus",
    "PlanCode",
    "WebhookEventType",

    # Schemas
    "SubscriptionLink",
    "WebhookAck",

    # Services
    "PayPalClient",
    "SubscriptionService",
]
