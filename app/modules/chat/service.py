"""
Relay del asistente contable hacia un endpoint de chat completions.
"""
import logging
from typing import Any, Optional

import httpx

from app.common.exceptions import UpstreamError, ValidationError
from app.core.config import Settings

logger = logging.getLogger(__name__)

CHAT_TEMPERATURE = 0.3


class ChatService:
    """Envía la conversación al proveedor y devuelve la respuesta del asistente."""

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self._api_key = settings.OPENAI_API_KEY
        self._base_url = settings.OPENAI_BASE_URL.rstrip("/")
        self._default_model = settings.OPENAI_DEFAULT_MODEL
        self._client = client or httpx.Client(timeout=settings.request_timeout)

    def reply(self, messages: Any, model: Optional[str] = None) -> str:
        """
        Obtener la respuesta del asistente.

        Raises:
            ValidationError: falta la API key o no hay mensajes
            UpstreamError: el proveedor respondió con error o no respondió
        """
        if not self._api_key:
            raise ValidationError("Missing OPENAI_API_KEY")
        if not isinstance(messages, list) or not messages:
            raise ValidationError("Missing messages")

        model = model or self._default_model
        try:
            response = self._client.post(
                f"{self._base_url}/chat/completions",
                json={"model": model, "messages": messages, "temperature": CHAT_TEMPERATURE},
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Chat provider unreachable: {e}")
            raise UpstreamError("Chat request failed")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            error = data.get("error") if isinstance(data.get("error"), dict) else {}
            logger.warning(f"Chat provider returned {response.status_code} for model {model}")
            raise UpstreamError(error.get("message") or "OpenAI error", response.status_code)

        choices = data.get("choices") or [{}]
        content = ((choices[0] or {}).get("message") or {}).get("content") or ""
        logger.info(f"Chat reply from {model} ({len(messages)} messages)")
        return str(content).strip()
