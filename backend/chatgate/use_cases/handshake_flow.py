"""Bot-side handshake confirmation use-cases."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import issue_session_token
from ..domain_errors import HandshakeStateError
from ..models import Identity
from ..schemas import IdentityResponse
from ..services.handshake import ConfirmOutcome, HandshakeBroker, HandshakeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelegramProfile:
    """Sender of a Telegram update."""

    telegram_id: str
    username: str | None = None
    first_name: str | None = None

    @classmethod
    def from_update_user(cls, user: dict) -> "TelegramProfile":
        return cls(
            telegram_id=str(user["id"]),
            username=user.get("username"),
            first_name=user.get("first_name"),
        )


@dataclass(frozen=True)
class ConfirmationResult:
    outcome: ConfirmOutcome
    identity: Identity | None = None
    blocked: bool = False


def get_or_create_identity(db: Session, profile: TelegramProfile) -> Identity:
    """Load the identity for a Telegram user, registering it on first contact."""
    identity = db.query(Identity).filter(Identity.telegram_id == profile.telegram_id).first()
    if identity:
        return identity

    identity = Identity(
        telegram_id=profile.telegram_id,
        username=profile.username or f"user_{profile.telegram_id}",
        first_name=profile.first_name or "User",
    )
    db.add(identity)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent first contact from the same Telegram user.
        db.rollback()
        return db.query(Identity).filter(Identity.telegram_id == profile.telegram_id).one()
    db.refresh(identity)
    logger.info(f"✅ Registered identity {identity.id} for Telegram user {profile.telegram_id}")
    return identity


def confirm_handshake_use_case(
    *,
    db: Session,
    broker: HandshakeBroker,
    code: str,
    profile: TelegramProfile,
    strict: bool = True,
) -> ConfirmationResult:
    """Confirm a pending handshake for the Telegram user and hand the poller a token.

    Unknown, expired and already-resolved codes are reported, never raised.
    With strict=True an internal registry inconsistency raises HandshakeStateError;
    otherwise it is logged and reported as NOT_FOUND.
    """
    if not broker.is_pending(code):
        outcome = ConfirmOutcome.NOT_FOUND if broker.registry.get(code) is None else ConfirmOutcome.ALREADY_RESOLVED
        logger.warning(f"❌ Handshake confirmation ignored ({outcome.value}): {code[:8]}...")
        return ConfirmationResult(outcome=outcome)

    identity = get_or_create_identity(db, profile)
    if identity.is_blocked:
        logger.warning(f"❌ Blocked identity {identity.id} tried to confirm handshake {code[:8]}...")
        return ConfirmationResult(outcome=ConfirmOutcome.NOT_FOUND, identity=identity, blocked=True)

    token = issue_session_token(identity)
    payload = IdentityResponse.model_validate(identity).model_dump(mode="json", by_alias=True)
    outcome = broker.resolve(code, HandshakeResult(token=token, identity=payload))

    if outcome is not ConfirmOutcome.CONFIRMED:
        message = f"Handshake {code[:8]}... was pending but could not be resolved ({outcome.value})"
        if strict:
            raise HandshakeStateError(message)
        logger.error(message)
        return ConfirmationResult(outcome=outcome, identity=identity)

    logger.info(f"✅ Handshake confirmed for identity {identity.id}")
    return ConfirmationResult(outcome=outcome, identity=identity)
