"""
Schemas for subscription management.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class SubscriptionLink(BaseModel):
    """Respuesta de create-subscription: el usuario aprueba en PayPal."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    approval_url: str
    subscription_id: str


class WebhookAck(BaseModel):
    ok: bool = True
    ignored: Optional[bool] = None
