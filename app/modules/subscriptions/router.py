"""
API Router for PayPal subscriptions.
"""
from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.database.database import get_db
from app.modules.auth.dependencies import get_auth_context
from app.modules.auth.schemas import AuthContext

from .paypal import PayPalClient
from .schemas import SubscriptionLink, WebhookAck
from .service import SubscriptionService

router = APIRouter(
    prefix="/paypal",
    tags=["Subscriptions"],
)


@lru_cache
def _paypal_for(settings: Settings) -> PayPalClient:
    return PayPalClient(settings)


def get_paypal_client(settings: Settings = Depends(get_settings)) -> PayPalClient:
    return _paypal_for(settings)


def get_subscription_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    paypal: PayPalClient = Depends(get_paypal_client)
) -> SubscriptionService:
    return SubscriptionService(db, settings, paypal)


def _base_url(request: Request, settings: Settings) -> str:
    return settings.APP_BASE_URL or request.headers.get("origin") or f"https://{request.headers.get('host', '')}"


@router.post("/create-subscription", response_model=SubscriptionLink, response_model_by_alias=True)
def create_subscription(
    request: Request,
    body: Dict[str, Any] = Body(default={}),
    settings: Settings = Depends(get_settings),
    service: SubscriptionService = Depends(get_subscription_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """
    Crear una suscripción PRO o PLUS.

    Devuelve el link de aprobación de PayPal; el plan queda pendiente hasta el webhook.
    """
    return service.create_subscription(auth.uid, (body or {}).get("planCode"), _base_url(request, settings))


@router.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
def paypal_webhook(
    request: Request,
    event: Any = Body(default=None),
    service: SubscriptionService = Depends(get_subscription_service)
):
    """
    Webhook de PayPal (sin autenticación de usuario; se valida la firma).
    """
    return service.handle_webhook(request.headers, event)
