"""Process-wide service instances exposed as FastAPI dependencies.

Tests replace them through app.dependency_overrides.
"""
from .config import settings
from .services.ai_providers import ProviderChain, build_provider_chain
from .services.handshake import HandshakeBroker
from .services.quota import QuotaLedger

_handshake_broker: HandshakeBroker | None = None
_quota_ledger: QuotaLedger | None = None
_reply_generator: ProviderChain | None = None


def get_handshake_broker() -> HandshakeBroker:
    global _handshake_broker
    if _handshake_broker is None:
        _handshake_broker = HandshakeBroker(
            deep_link_base=settings.bot_deep_link_base,
            timeout_seconds=settings.HANDSHAKE_TIMEOUT_SECONDS,
        )
    return _handshake_broker


def get_quota_ledger() -> QuotaLedger:
    global _quota_ledger
    if _quota_ledger is None:
        _quota_ledger = QuotaLedger(turn_weight=settings.QUOTA_TURN_WEIGHT)
    return _quota_ledger


def get_reply_generator() -> ProviderChain:
    global _reply_generator
    if _reply_generator is None:
        _reply_generator = build_provider_chain(settings)
    return _reply_generator
