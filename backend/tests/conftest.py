from __future__ import annotations

import os

# Settings are read at import time; configure before importing chatgate.
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-session-tokens-0123456789")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TELEGRAM_BOT_USERNAME", "test_bot")
os.environ.setdefault("AUTH_INIT_IP_LIMIT_PER_MINUTE", "0")
os.environ.setdefault("ENV", "test")

from typing import Sequence  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from chatgate.database import Base, get_db  # noqa: E402
from chatgate.dependencies import (  # noqa: E402
    get_handshake_broker,
    get_quota_ledger,
    get_reply_generator,
)
from chatgate.domain_errors import GenerationError  # noqa: E402
from chatgate.main import app  # noqa: E402
from chatgate.models import Identity  # noqa: E402
from chatgate.services.ai_providers import ChatTurn  # noqa: E402
from chatgate.services.handshake import HandshakeBroker  # noqa: E402
from chatgate.services.quota import QuotaLedger  # noqa: E402


class FakeReplyGenerator:
    """Records histories; replies with canned text or fails on demand."""

    def __init__(self, reply: str = "Hello from AI"):
        self.reply = reply
        self.fail = False
        self.histories: list[list[ChatTurn]] = []

    async def generate(self, history: Sequence[ChatTurn]) -> str:
        self.histories.append(list(history))
        if self.fail:
            raise GenerationError("All AI providers failed")
        return self.reply


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_identity(db_session):
    def _make(telegram_id: str = "1001", **fields) -> Identity:
        identity = Identity(
            telegram_id=telegram_id,
            username=fields.pop("username", f"user_{telegram_id}"),
            first_name=fields.pop("first_name", "Test"),
            **fields,
        )
        db_session.add(identity)
        db_session.commit()
        db_session.refresh(identity)
        return identity

    return _make


@pytest.fixture
def broker() -> HandshakeBroker:
    return HandshakeBroker(deep_link_base="https://t.me/test_bot", timeout_seconds=300)


@pytest.fixture
def ledger() -> QuotaLedger:
    return QuotaLedger(turn_weight=1)


@pytest.fixture
def generator() -> FakeReplyGenerator:
    return FakeReplyGenerator()


@pytest.fixture
def override_dependencies(session_factory, broker, ledger, generator):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_handshake_broker] = lambda: broker
    app.dependency_overrides[get_quota_ledger] = lambda: ledger
    app.dependency_overrides[get_reply_generator] = lambda: generator
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(override_dependencies):
    with TestClient(override_dependencies) as test_client:
        yield test_client
