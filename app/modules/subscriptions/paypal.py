"""
Cliente mínimo de la API REST de PayPal (suscripciones y webhooks).
"""
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from app.common.exceptions import InternalError, UpstreamError
from app.core.config import Settings

logger = logging.getLogger(__name__)

# Headers que PayPal firma en cada webhook
WEBHOOK_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalClient:
    """OAuth client-credentials + endpoints de billing y notificaciones."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self._base_url = settings.paypal_base_url
        self._client_id = settings.PAYPAL_CLIENT_ID
        self._client_secret = settings.PAYPAL_CLIENT_SECRET
        self._webhook_id = settings.PAYPAL_WEBHOOK_ID
        self._client = client or httpx.Client(timeout=settings.request_timeout)

    @staticmethod
    def _read_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def get_access_token(self) -> str:
        """Obtener un access token con las credenciales de la app."""
        if not self._client_id or not self._client_secret:
            raise InternalError("Missing PayPal credentials")

        response = self._client.post(
            f"{self._base_url}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self._client_id, self._client_secret),
            headers={"Accept": "application/json"},
        )
        data = self._read_json(response)
        if not response.is_success or not data.get("access_token"):
            logger.error(f"PayPal token request failed: {response.status_code}")
            raise UpstreamError(data.get("error_description") or "PayPal auth failed", response.status_code)
        return data["access_token"]

    def create_subscription(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Crear una suscripción y devolver la respuesta de PayPal.

        Raises:
            UpstreamError: PayPal rechazó la solicitud
        """
        token = self.get_access_token()
        response = self._client.post(
            f"{self._base_url}/v1/billing/subscriptions",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        data = self._read_json(response)
        if not response.is_success:
            logger.warning(f"PayPal rejected subscription for plan {payload.get('plan_id')}: {response.status_code}")
            raise UpstreamError(data.get("message") or "PayPal error", response.status_code)
        return data

    def verify_webhook(self, headers: Mapping[str, str], event: Dict[str, Any]) -> bool:
        """Validar la firma de un webhook contra PayPal."""
        if not self._webhook_id:
            logger.warning("PAYPAL_WEBHOOK_ID not configured; webhook rejected")
            return False

        signature = {field: headers.get(header) for field, header in WEBHOOK_SIGNATURE_HEADERS.items()}
        if not all(signature.values()):
            return False

        try:
            token = self.get_access_token()
            response = self._client.post(
                f"{self._base_url}/v1/notifications/verify-webhook-signature",
                json={**signature, "webhook_id": self._webhook_id, "webhook_event": event},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"PayPal webhook verification failed: {e}")
            return False

        data = self._read_json(response)
        return response.is_success and data.get("verification_status") == "SUCCESS"
