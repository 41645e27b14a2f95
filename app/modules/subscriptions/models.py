"""
Models for subscription management.
"""
from sqlalchemy import Column, String
from app.database.database import Base
from app.common.mixins import TimestampMixin
from enum import Enum


class SubscriptionStatus(str, Enum):
    """Estados de suscripción."""
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class PlanCode(str, Enum):
    """Planes pagados disponibles en PayPal."""
    PRO = "PRO"
    PLUS = "PLUS"


class WebhookEventType(str, Enum):
    """Eventos de PayPal que cambian el estado de la suscripción."""
    ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
    UPDATED = "BILLING.SUBSCRIPTION.UPDATED"
    CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
    SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
    EXPIRED = "BILLING.SUBSCRIPTION.EXPIRED"
    PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value) -> "WebhookEventType":
        try:
            return cls(str(value or ""))
        except ValueError:
            return cls.OTHER

    @property
    def suspends(self) -> bool:
        return self in (
            WebhookEventType.CANCELLED,
            WebhookEventType.SUSPENDED,
            WebhookEventType.EXPIRED,
            WebhookEventType.PAYMENT_FAILED,
        )


class UserAccount(Base, TimestampMixin):
    """Cuenta del usuario autenticado; la clave es el subject del token."""
    __tablename__ = "user_accounts"

    uid = Column(String(128), primary_key=True)

    # Plan y estado de la suscripción
    plan = Column(String(20), nullable=True)
    status = Column(String(20), nullable=True)
    pending_plan = Column(String(20), nullable=True)

    # Referencias en PayPal
    paypal_subscription_id = Column(String(64), nullable=True, index=True)
    paypal_plan_id = Column(String(64), nullable=True)
