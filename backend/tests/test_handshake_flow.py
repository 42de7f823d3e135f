from __future__ import annotations

import pytest

from chatgate.auth import verify_session_token
from chatgate.domain_errors import HandshakeStateError
from chatgate.models import Identity
from chatgate.services.handshake import ConfirmOutcome, HandshakeBroker, HandshakeStatus
from chatgate.use_cases.handshake_flow import (
    TelegramProfile,
    confirm_handshake_use_case,
    get_or_create_identity,
)


class _LosingBroker(HandshakeBroker):
    """Reports the code as pending but loses it on resolve."""

    def resolve(self, code, result):
        return ConfirmOutcome.NOT_FOUND


def test_get_or_create_identity_registers_on_first_contact(db_session) -> None:
    identity = get_or_create_identity(db_session, TelegramProfile(telegram_id="555"))

    assert identity.id is not None
    assert identity.username == "user_555"
    assert identity.first_name == "User"
    assert identity.plan == "free"
    assert identity.daily_limit == 100
    assert identity.used_today == 0

    again = get_or_create_identity(db_session, TelegramProfile(telegram_id="555", username="changed"))
    assert again.id == identity.id
    assert db_session.query(Identity).count() == 1


def test_profile_from_update_user_stringifies_id() -> None:
    profile = TelegramProfile.from_update_user({"id": 42, "username": "neo", "first_name": "Thomas"})
    assert profile == TelegramProfile(telegram_id="42", username="neo", first_name="Thomas")


@pytest.mark.asyncio
async def test_confirm_issues_token_accepted_for_identity(db_session, broker) -> None:
    code = broker.begin().code

    result = confirm_handshake_use_case(
        db=db_session,
        broker=broker,
        code=code,
        profile=TelegramProfile(telegram_id="1001", username="alice", first_name="Alice"),
    )

    assert result.outcome is ConfirmOutcome.CONFIRMED
    outcome = await broker.await_resolution(code, max_wait=1)
    assert outcome.status is HandshakeStatus.RESOLVED
    assert outcome.result.identity["telegramId"] == "1001"
    assert outcome.result.identity["username"] == "alice"

    identity = verify_session_token(db_session, outcome.result.token)
    assert identity.id == result.identity.id


@pytest.mark.asyncio
async def test_second_confirmation_is_benign_and_keeps_first_token(db_session, broker) -> None:
    code = broker.begin().code
    profile = TelegramProfile(telegram_id="1001")

    first = confirm_handshake_use_case(db=db_session, broker=broker, code=code, profile=profile)
    token_before = broker.registry.get(code).result.token
    second = confirm_handshake_use_case(
        db=db_session,
        broker=broker,
        code=code,
        profile=TelegramProfile(telegram_id="2002"),
    )

    assert first.outcome is ConfirmOutcome.CONFIRMED
    assert second.outcome is ConfirmOutcome.ALREADY_RESOLVED
    outcome = await broker.await_resolution(code, max_wait=1)
    assert outcome.result.token == token_before
    # The second sender was never registered.
    assert db_session.query(Identity).filter(Identity.telegram_id == "2002").count() == 0


def test_unknown_code_is_not_found_and_creates_nothing(db_session, broker) -> None:
    result = confirm_handshake_use_case(
        db=db_session,
        broker=broker,
        code="stale-code",
        profile=TelegramProfile(telegram_id="1001"),
    )

    assert result.outcome is ConfirmOutcome.NOT_FOUND
    assert result.identity is None
    assert db_session.query(Identity).count() == 0


def test_blocked_identity_cannot_confirm(db_session, broker, make_identity) -> None:
    make_identity("1001", is_blocked=True)
    code = broker.begin().code

    result = confirm_handshake_use_case(
        db=db_session,
        broker=broker,
        code=code,
        profile=TelegramProfile(telegram_id="1001"),
    )

    assert result.blocked is True
    assert broker.is_pending(code)


def test_lost_entry_raises_in_strict_mode(db_session) -> None:
    broker = _LosingBroker(deep_link_base="https://t.me/test_bot")
    code = broker.begin().code

    with pytest.raises(HandshakeStateError):
        confirm_handshake_use_case(
            db=db_session,
            broker=broker,
            code=code,
            profile=TelegramProfile(telegram_id="1001"),
            strict=True,
        )


def test_lost_entry_is_logged_and_swallowed_when_not_strict(db_session) -> None:
    broker = _LosingBroker(deep_link_base="https://t.me/test_bot")
    code = broker.begin().code

    result = confirm_handshake_use_case(
        db=db_session,
        broker=broker,
        code=code,
        profile=TelegramProfile(telegram_id="1001"),
        strict=False,
    )

    assert result.outcome is ConfirmOutcome.NOT_FOUND
