from pydantic import BaseModel, ConfigDict


class AuthContext(BaseModel):
    """Contexto de autenticación del request."""
    uid: str
    # Header Authorization recibido; se reenvía al worker SUNAT
    authorization: str

    model_config = ConfigDict(frozen=True)
