from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from app.core.config import settings
from app.common.exceptions import BillingError
import logging

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # In-memory SQLite for tests: one shared connection
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
    }


engine = create_engine(
    settings.database_url,
    echo=settings.DEBUG,
    **_engine_options(settings.database_url)
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Genera una sesión de base de datos por request."""
    db = SessionLocal()
    try:
        yield db
    except BillingError:
        db.rollback()
        raise
    except Exception as e:
        logger.error(f"Database error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def create_tables():
    """Crea las tablas registradas en Base (desarrollo y tests)."""
    # Import models so they register on Base.metadata
    import app.modules.subscriptions.models  # noqa: F401
    import app.modules.businesses.models  # noqa: F401
    import app.modules.billing.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
