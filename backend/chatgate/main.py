"""FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Base, engine
from .dependencies import get_handshake_broker
from .domain_errors import DomainError
from .problem_details import domain_error_handler
from .routers import auth, chats, telegram
from .services.handshake import HandshakeBroker

logger = logging.getLogger(__name__)

# Production safety checks (fail closed on insecure config).
if settings.is_production and not settings.cors_origins:
    raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
if settings.is_production and any(origin == "*" for origin in settings.cors_origins):
    raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard).")
if settings.is_production and len(settings.JWT_SECRET_KEY) < 32:
    raise RuntimeError("JWT_SECRET_KEY must be at least 32 characters in production.")
if settings.is_production and not settings.TELEGRAM_BOT_USERNAME:
    raise RuntimeError("TELEGRAM_BOT_USERNAME must be set in production (deep links need it).")


@asynccontextmanager
async def lifespan(_: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info(f"✅ {settings.APP_NAME} started (bot: {settings.TELEGRAM_BOT_USERNAME or 'not configured'})")
    yield


# Create app
app = FastAPI(
    title="AI Chat Gateway",
    version="1.0.0",
    description="Telegram-authenticated chat API in front of generative AI providers",
    lifespan=lifespan,
)

app.add_exception_handler(DomainError, domain_error_handler)

# CORS
cors_headers = ["Authorization", "Content-Type"]
if not settings.is_production:
    cors_headers = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=cors_headers,
)

# Include routers
app.include_router(auth.router, prefix="/api")
app.include_router(chats.router, prefix="/api")
app.include_router(telegram.router, prefix="/api")


@app.get("/health")
def health_check(broker: HandshakeBroker = Depends(get_handshake_broker)):
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": "1.0.0",
        "bot": "online" if settings.TELEGRAM_BOT_USERNAME else "offline",
        "pendingHandshakes": len(broker),
    }
