"""
Fixtures compartidos: la app apunta a SQLite en memoria y tokens HS256 de prueba.
"""
import os

# Antes de importar la app: la configuración se resuelve una sola vez
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_SECRET"] = "test-secret"
os.environ["AUTH_ALGORITHM"] = "HS256"
os.environ["SUNAT_WORKER_URL"] = "http://sunat-worker.test/"
os.environ["OPENAI_API_KEY"] = "sk-test"
os.environ["PAYPAL_CLIENT_ID"] = "paypal-client"
os.environ["PAYPAL_CLIENT_SECRET"] = "paypal-secret"
os.environ["PAYPAL_WEBHOOK_ID"] = "WH-TEST"
os.environ["PAYPAL_PLAN_ID_PRO"] = "P-PRO"
os.environ["PAYPAL_PLAN_ID_PLUS"] = "P-PLUS"
os.environ["APP_BASE_URL"] = "https://app.contapp.test"

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.database.database import Base, SessionLocal, create_tables, engine
from app.main import app
from app.modules.businesses.models import Business

TEST_UID = "user-1"
OTHER_UID = "user-2"
TEST_BUSINESS_ID = "biz-1"


def make_token(uid: str = TEST_UID, secret: str = "test-secret", expires_in: int = 3600) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": uid, "iat": now, "exp": now + timedelta(seconds=expires_in)}
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture(autouse=True)
def database():
    create_tables()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def business(db_session):
    business = Business(id=TEST_BUSINESS_ID, owner_uid=TEST_UID, name="Bodega Don Lucho", ruc="20123456789")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def token_factory():
    return make_token


@pytest.fixture
def client():
    app.dependency_overrides.clear()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
