"""Session tokens: issue, decode and verify."""
from __future__ import annotations

import logging
import time

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .domain_errors import TokenErrorKind, TokenVerificationError
from .models import Identity

logger = logging.getLogger(__name__)

# Bearer token scheme; missing header is reported as 401 by the dependency.
security = HTTPBearer(auto_error=False)

SESSION_TOKEN_TYPE = "session"


def issue_session_token(identity: Identity, *, now: int | None = None) -> str:
    """Create a signed session token for the identity (7 days by default)."""
    issued_at = int(time.time()) if now is None else int(now)
    expires_at = issued_at + int(settings.SESSION_TOKEN_EXPIRE_DAYS) * 86400
    claims = {
        "sub": str(identity.id),
        "tid": str(identity.telegram_id),
        "iat": issued_at,
        "exp": expires_at,
        "type": SESSION_TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_session_token(token: str, *, now: int | None = None) -> dict:
    """Check signature and expiry; return the claims."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            # exp is checked below against an injectable clock.
            options={"verify_exp": False, "verify_iat": False},
        )
    except JWTError:
        raise TokenVerificationError(TokenErrorKind.INVALID_SIGNATURE)

    if payload.get("type") != SESSION_TOKEN_TYPE:
        raise TokenVerificationError(TokenErrorKind.INVALID_SIGNATURE, "Invalid token type")

    current = int(time.time()) if now is None else int(now)
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise TokenVerificationError(TokenErrorKind.INVALID_SIGNATURE)
    if current > exp_int:
        raise TokenVerificationError(TokenErrorKind.EXPIRED, "Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise TokenVerificationError(TokenErrorKind.INVALID_SIGNATURE)
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > current + int(settings.JWT_LEEWAY_SECONDS):
            raise TokenVerificationError(TokenErrorKind.INVALID_SIGNATURE)
    return payload


def _parse_token_subject(payload: dict) -> int:
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise TokenVerificationError(TokenErrorKind.INVALID_SIGNATURE)


def verify_session_token(db: Session, token: str, *, now: int | None = None) -> Identity:
    """Resolve a session token to a live identity."""
    payload = decode_session_token(token, now=now)
    identity_id = _parse_token_subject(payload)

    identity = db.query(Identity).filter(Identity.id == identity_id).first()
    if identity is None:
        raise TokenVerificationError(TokenErrorKind.UNKNOWN_SUBJECT, "Identity not found")
    if identity.is_blocked:
        raise TokenVerificationError(TokenErrorKind.UNKNOWN_SUBJECT, "Identity blocked")
    if str(identity.telegram_id) != str(payload.get("tid")):
        raise TokenVerificationError(TokenErrorKind.UNKNOWN_SUBJECT, "Identity mismatch")
    return identity


def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> Identity:
    """Get the authenticated identity; every failure is a uniform 401."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verify_session_token(db, credentials.credentials)
    except TokenVerificationError as exc:
        logger.info(f"Session token rejected: {exc.kind.value} ({exc.message})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
