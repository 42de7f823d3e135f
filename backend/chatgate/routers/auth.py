"""Auth endpoints: Telegram login handshake and session check."""
import ipaddress
import logging

import redis
import segno
from redis.exceptions import RedisError
from fastapi import APIRouter, Depends, Request, Response

from ..auth import get_current_identity
from ..config import settings
from ..dependencies import get_handshake_broker
from ..domain_errors import DomainError
from ..models import Identity
from ..schemas import (
    AuthInitResponse,
    AuthStatusResponse,
    AuthVerifyResponse,
    IdentityResponse,
)
from ..services.handshake import HandshakeBroker, HandshakeStatus

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


_redis_client = None


def _get_redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def _get_client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


def _set_no_store(response: Response) -> None:
    # Tokens must not end up in shared caches.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


def _incr_with_ttl(key: str, ttl_seconds: int) -> tuple[int, int]:
    """
    Increment a Redis counter and ensure it has an expiry.
    Returns (value, ttl_remaining_seconds).
    """
    r = _get_redis()
    value = r.incr(key)
    if value == 1:
        r.expire(key, ttl_seconds)
    ttl = r.ttl(key)
    if ttl is None or ttl < 0:
        ttl = ttl_seconds
    return int(value), int(ttl)


def _enforce_init_rate_limit(request: Request) -> None:
    limit = settings.AUTH_INIT_IP_LIMIT_PER_MINUTE
    if limit <= 0:
        return
    ip = _get_client_ip(request)
    try:
        attempts, ttl = _incr_with_ttl(f"auth:rl:init:ip:{ip}", 60)
    except RedisError:
        # Fail open if Redis is down to avoid total auth outage.
        logger.exception("Redis error during auth init rate limiting (fail-open)")
        return
    if attempts > limit:
        raise DomainError(
            code="RATE_LIMITED",
            http_status=429,
            message="Too many login attempts. Try again later.",
            details={"retry_after": ttl},
        )


def render_qr_data_uri(payload: str) -> str:
    """PNG QR code for the payload as a data: URI."""
    return segno.make_qr(payload, error="m").png_data_uri(scale=5, border=2)


@router.post("/init", response_model=AuthInitResponse)
async def init_handshake(
    request: Request,
    response: Response,
    broker: HandshakeBroker = Depends(get_handshake_broker),
):
    """
    Start a Telegram login.

    Flow:
    1. Web client calls POST /auth/init and shows the deep link / QR
    2. User opens the bot, which receives /start <code>
    3. Bot webhook confirms the code
    4. Web client long-polls GET /auth/status/{code} and receives the token
    """
    _enforce_init_rate_limit(request)
    _set_no_store(response)

    ticket = broker.begin()
    return AuthInitResponse(
        auth_code=ticket.code,
        deep_link=ticket.deep_link,
        qr_image_data_uri=render_qr_data_uri(ticket.qr_payload),
        expires_in=int(ticket.expires_in),
    )


@router.get("/status/{code}", response_model=AuthStatusResponse, response_model_exclude_none=True)
async def handshake_status(
    code: str,
    response: Response,
    broker: HandshakeBroker = Depends(get_handshake_broker),
):
    """Long-poll the handshake; clients re-poll on `pending` and restart on `expired`."""
    _set_no_store(response)
    outcome = await broker.await_resolution(code, settings.HANDSHAKE_POLL_SECONDS)

    if outcome.status is HandshakeStatus.RESOLVED and outcome.result is not None:
        return AuthStatusResponse(
            success=True,
            status="resolved",
            token=outcome.result.token,
            identity=IdentityResponse.model_validate(outcome.result.identity),
        )
    return AuthStatusResponse(success=False, status=outcome.status.value)


@router.get("/verify", response_model=AuthVerifyResponse)
def verify_session(current_identity: Identity = Depends(get_current_identity)):
    """Check the bearer session token and return the identity."""
    return AuthVerifyResponse(identity=IdentityResponse.model_validate(current_identity))
