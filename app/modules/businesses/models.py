from sqlalchemy import Column, String
from app.database.database import Base
from app.common.mixins import TimestampMixin


class Business(Base, TimestampMixin):
    """Negocio del usuario; agrupa facturas, pagos y comprobantes."""
    __tablename__ = "businesses"

    # El ID del negocio es único dentro de cada usuario, no globalmente
    owner_uid = Column(String(128), primary_key=True)
    id = Column(String(128), primary_key=True)
    name = Column(String(200), nullable=True)
    ruc = Column(String(11), nullable=True)
