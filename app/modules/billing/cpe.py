"""
Relay hacia el worker SUNAT que emite los comprobantes electrónicos (CPE).

Este servicio no firma ni envía nada a SUNAT: reenvía la solicitud al worker
con el mismo token del usuario y devuelve la factura tal como el worker la
dejó (campos cpe_* o cpe_beta_* según el ambiente).
"""
import logging
from typing import Any, Optional

import httpx

from app.common.exceptions import InternalError, UpstreamError
from app.core.config import Settings
from app.modules.billing.models import CpeEnvironment
from app.modules.billing.schemas import CpeEmitResponse
from app.modules.billing.service import InvoiceService

logger = logging.getLogger(__name__)

EMIT_PATH = "/sunat/cpe/emit"
DEFAULT_EMIT_ERROR = "CPE emit failed"


class CpeRelay:
    """Cliente HTTP del worker SUNAT."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self._base_url = settings.sunat_worker_url
        self._client = client or httpx.Client(timeout=settings.request_timeout)

    def _emit_url(self) -> str:
        if not self._base_url:
            raise InternalError("Missing SUNAT_WORKER_URL")
        return f"{self._base_url}{EMIT_PATH}"

    @staticmethod
    def _read_json(response: httpx.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def request_emission(
        self,
        env: CpeEnvironment,
        business_id: str,
        invoice_id: str,
        authorization: str
    ) -> Any:
        """
        Pedir al worker la emisión de la factura en el ambiente indicado.

        Returns:
            El campo ``result`` de la respuesta del worker (o None)

        Raises:
            InternalError: falta SUNAT_WORKER_URL
            UpstreamError: el worker respondió con error o no respondió a tiempo
        """
        url = self._emit_url()
        try:
            response = self._client.post(
                url,
                json={"businessId": business_id, "invoiceId": invoice_id, "env": env.value},
                headers={"Authorization": authorization},
            )
        except httpx.HTTPError as e:
            logger.error(f"CPE worker unreachable for invoice {invoice_id} ({env.value}): {e}")
            raise UpstreamError(DEFAULT_EMIT_ERROR)

        data = self._read_json(response)
        if not response.is_success:
            logger.warning(
                f"CPE worker rejected invoice {invoice_id} ({env.value}): "
                f"{response.status_code} {data.get('error')}"
            )
            raise UpstreamError(data.get("error") or DEFAULT_EMIT_ERROR, response.status_code)

        logger.info(f"CPE emission requested for invoice {invoice_id} in {env.value}")
        return data.get("result")

    def emit(
        self,
        service: InvoiceService,
        env: CpeEnvironment,
        uid: str,
        business_id: str,
        invoice_id: str,
        authorization: str
    ) -> CpeEmitResponse:
        """Verificar la factura, delegar la emisión y releerla."""
        service.get_invoice(uid, business_id, invoice_id)
        result = self.request_emission(env, business_id, invoice_id, authorization)
        invoice = service.get_invoice(uid, business_id, invoice_id)
        return CpeEmitResponse(result=result or None, invoice=invoice)
