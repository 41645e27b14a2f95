"""
Alta de suscripciones en PayPal y sincronización del plan por webhooks.
"""
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from app.common.exceptions import BillingError, InternalError, ValidationError
from app.core.config import Settings

from . import crud
from .models import PlanCode, SubscriptionStatus, UserAccount, WebhookEventType
from .paypal import PayPalClient
from .schemas import SubscriptionLink, WebhookAck

logger = logging.getLogger(__name__)

RETURN_PATH = "/dashboard/plan?paypal=success"
CANCEL_PATH = "/dashboard/plan?paypal=cancel"


class SubscriptionService:

    def __init__(self, db: Session, settings: Settings, paypal: PayPalClient):
        self.db = db
        self.paypal = paypal
        self.brand_name = settings.PAYPAL_BRAND_NAME
        self.plan_ids = settings.plan_ids

    def plan_from_id(self, plan_id: Optional[str]) -> Optional[str]:
        for code, configured in self.plan_ids.items():
            if plan_id and plan_id == configured:
                return code
        return None

    def create_subscription(self, uid: str, plan_code: Any, base_url: str) -> SubscriptionLink:
        """
        Crear la suscripción en PayPal y dejar el plan como pendiente.

        Raises:
            ValidationError: plan desconocido o sin ID configurado
            InternalError: PayPal no devolvió el link de aprobación
        """
        plan_code = str(plan_code or "")
        plan_id = self.plan_ids.get(plan_code) if plan_code in PlanCode.__members__ else None
        if not plan_id:
            raise ValidationError("Invalid plan")

        data = self.paypal.create_subscription({
            "plan_id": plan_id,
            "custom_id": f"{uid}:{plan_code}",
            "application_context": {
                "brand_name": self.brand_name,
                "locale": "es-PE",
                "user_action": "SUBSCRIBE_NOW",
                "return_url": f"{base_url}{RETURN_PATH}",
                "cancel_url": f"{base_url}{CANCEL_PATH}",
            },
        })

        approval = next(
            (link for link in data.get("links") or [] if isinstance(link, dict) and link.get("rel") == "approve"),
            None
        )
        if not approval or not approval.get("href"):
            raise InternalError("No approval link")

        try:
            account = crud.get_or_create_account(self.db, uid)
            crud.merge_account(
                self.db, account,
                paypal_subscription_id=data.get("id"),
                paypal_plan_id=plan_id,
                pending_plan=plan_code,
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error saving subscription for {uid}: {e}", exc_info=True)
            raise InternalError("Error saving subscription")

        logger.info(f"PayPal subscription {data.get('id')} created for {uid} ({plan_code})")
        return SubscriptionLink(approval_url=approval["href"], subscription_id=data.get("id") or "")

    def _resolve_account(self, resource: Dict[str, Any]) -> Tuple[Optional[UserAccount], Optional[str]]:
        """Cuenta destino del evento y plan indicado en custom_id ("uid:PLAN")."""
        custom_id = str(resource.get("custom_id") or "")
        custom_uid, _, custom_plan = custom_id.partition(":")
        subscription_id = resource.get("id")

        if custom_uid:
            return crud.get_or_create_account(self.db, custom_uid), custom_plan or None
        if subscription_id:
            return crud.get_account_by_subscription(self.db, subscription_id), None
        return None, None

    def handle_webhook(self, headers: Mapping[str, str], event: Any) -> WebhookAck:
        """Aplicar un evento de PayPal verificado a la cuenta del usuario."""
        event = event if isinstance(event, dict) else {}
        if not self.paypal.verify_webhook(headers, event):
            raise ValidationError("Webhook not verified")

        event_type = WebhookEventType.parse(event.get("event_type"))
        resource = event.get("resource") or {}
        if not isinstance(resource, dict):
            resource = {}
        plan_id = resource.get("plan_id")

        try:
            account, custom_plan = self._resolve_account(resource)
            if account is None:
                logger.info(f"PayPal event {event_type.value} ignored: no matching account")
                return WebhookAck(ignored=True)

            updates = {
                "paypal_subscription_id": resource.get("id"),
                "paypal_plan_id": plan_id,
            }
            activates = event_type is WebhookEventType.ACTIVATED or (
                event_type is WebhookEventType.UPDATED and resource.get("status") == SubscriptionStatus.ACTIVE.value
            )
            if activates:
                updates["status"] = SubscriptionStatus.ACTIVE.value
                updates["plan"] = self.plan_from_id(plan_id) or custom_plan or PlanCode.PRO.value
                updates["pending_plan"] = None
            elif event_type.suspends:
                updates["status"] = SubscriptionStatus.SUSPENDED.value
                updates["pending_plan"] = None

            crud.merge_account(self.db, account, **updates)

        except BillingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error applying PayPal event {event_type.value}: {e}", exc_info=True)
            raise InternalError("Webhook error")

        logger.info(f"PayPal event {event_type.value} applied to {account.uid}: {updates.get('status', 'unchanged')}")
        return WebhookAck()
