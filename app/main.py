from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Import database components
from app.database.database import create_tables

# Import middleware and error handlers
from app.common.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.common.exceptions import register_exception_handlers

# Import routers
from app.modules.billing.router import router as billing_router
from app.modules.chat.router import router as chat_router
from app.modules.subscriptions.router import router as subscriptions_router

from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="ContApp Peru API",
    description="Facturación, cobranza y emisión de CPE para negocios en Perú",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

# Add middleware (order matters!)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(chat_router)
app.include_router(subscriptions_router)
app.include_router(billing_router)


@app.get("/health")
async def health_check():
    return {"ok": True}


@app.on_event("startup")
async def startup_event():
    logger.info("ContApp API starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    # Sin migraciones: las tablas se crean al arrancar en desarrollo
    if settings.ENVIRONMENT == "development" or settings.AUTO_CREATE_TABLES:
        create_tables()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("ContApp API shutting down...")
