"""
Dependencias de autenticación para FastAPI.

El token Bearer lo emite un proveedor de identidad externo (p.ej. Firebase).
Aquí sólo se verifica la firma y se obtiene el subject, que delimita todo el
acceso a negocios y facturas.
"""
import logging
from functools import lru_cache
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.common.exceptions import AuthError
from app.core.config import Settings, get_settings
from app.modules.auth.schemas import AuthContext

logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)


class IdentityVerifier:
    """Verifica tokens de identidad y devuelve el subject."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._jwks_client = jwt.PyJWKClient(settings.AUTH_JWKS_URL) if settings.AUTH_JWKS_URL else None

    def _signing_key(self, token: str):
        if self._jwks_client is not None:
            return self._jwks_client.get_signing_key_from_jwt(token).key
        return self.settings.AUTH_SECRET

    def verify(self, token: str) -> str:
        """
        Decodificar y validar el token.

        Raises:
            AuthError: si la firma, expiración, audiencia o emisor no son válidos
        """
        options = {"verify_aud": bool(self.settings.AUTH_AUDIENCE)}
        try:
            payload = jwt.decode(
                token,
                self._signing_key(token),
                algorithms=[self.settings.AUTH_ALGORITHM],
                audience=self.settings.AUTH_AUDIENCE,
                issuer=self.settings.AUTH_ISSUER,
                options=options,
            )
        except jwt.PyJWTError as e:
            logger.info(f"Token rejected: {e}")
            raise AuthError("Invalid token")

        subject: Optional[str] = payload.get("sub") or payload.get("user_id")
        if not subject:
            raise AuthError("Invalid token")
        return str(subject)


@lru_cache
def _verifier_for(settings: Settings) -> IdentityVerifier:
    return IdentityVerifier(settings)


def get_identity_verifier(settings: Settings = Depends(get_settings)) -> IdentityVerifier:
    return _verifier_for(settings)


def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> AuthContext:
    """Obtener el contexto autenticado del request."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Missing auth token")

    uid = verifier.verify(credentials.credentials)
    return AuthContext(
        uid=uid,
        authorization=f"{credentials.scheme} {credentials.credentials}",
    )
