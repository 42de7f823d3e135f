"""
Telegram login handshake broker.

The web client asks for a one-time code, shows it as a deep link / QR and
long-polls; the bot webhook later confirms the code. The broker is the
rendezvous between the two:

    begin()             -> registers a pending entry, arms its expiry timer
    await_resolution()  -> suspends the poller until resolved or max_wait
    resolve()           -> the only transition into RESOLVED

Waiters are broadcast: every poll suspended when the code resolves receives
the result, after which the entry is dropped (delivered once). State lives in
a HandshakeRegistry so the in-memory default can be replaced.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class HandshakeStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    EXPIRED = "expired"


class ConfirmOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_RESOLVED = "already_resolved"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class HandshakeResult:
    """Payload handed to the poller once the bot confirms."""

    token: str
    identity: dict[str, Any]


@dataclass(frozen=True)
class HandshakeTicket:
    code: str
    deep_link: str
    expires_in: float

    @property
    def qr_payload(self) -> str:
        return self.deep_link


@dataclass(frozen=True)
class HandshakeOutcome:
    status: HandshakeStatus
    result: HandshakeResult | None = None


@dataclass(eq=False)
class PendingAuth:
    code: str
    created_at: float
    status: HandshakeStatus = HandshakeStatus.PENDING
    result: HandshakeResult | None = None
    waiters: set[asyncio.Future] = field(default_factory=set)
    expiry_handle: asyncio.TimerHandle | None = None


class HandshakeRegistry(Protocol):
    def put(self, entry: PendingAuth) -> None: ...

    def get(self, code: str) -> PendingAuth | None: ...

    def remove(self, code: str) -> PendingAuth | None: ...

    def codes(self) -> list[str]: ...


class InMemoryHandshakeRegistry:
    """Single-process registry (lost on restart)."""

    def __init__(self) -> None:
        self._entries: dict[str, PendingAuth] = {}

    def put(self, entry: PendingAuth) -> None:
        self._entries[entry.code] = entry

    def get(self, code: str) -> PendingAuth | None:
        return self._entries.get(code)

    def remove(self, code: str) -> PendingAuth | None:
        return self._entries.pop(code, None)

    def codes(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class HandshakeBroker:
    """Coordinates web pollers and bot confirmations by one-time code."""

    def __init__(
        self,
        *,
        deep_link_base: str,
        timeout_seconds: float = 300.0,
        registry: HandshakeRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.deep_link_base = deep_link_base.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.registry = registry if registry is not None else InMemoryHandshakeRegistry()
        self._clock = clock

    def __len__(self) -> int:
        return len(self.registry.codes())

    def begin(self) -> HandshakeTicket:
        """Register a fresh pending handshake and return its code and link."""
        code = str(uuid.uuid4())
        entry = PendingAuth(code=code, created_at=self._clock())
        self.registry.put(entry)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): expiry is still enforced lazily on access.
            loop = None
        if loop is not None:
            entry.expiry_handle = loop.call_later(self.timeout_seconds, self._expire, code)

        logger.info(f"Handshake {code[:8]}... started")
        return HandshakeTicket(
            code=code,
            deep_link=f"{self.deep_link_base}?start={code}",
            expires_in=self.timeout_seconds,
        )

    def is_pending(self, code: str) -> bool:
        entry = self._live_entry(code)
        return entry is not None and entry.status is HandshakeStatus.PENDING

    def resolve(self, code: str, result: HandshakeResult) -> ConfirmOutcome:
        """Move a pending handshake to RESOLVED and wake every waiter."""
        entry = self._live_entry(code)
        if entry is None:
            return ConfirmOutcome.NOT_FOUND
        if entry.status is HandshakeStatus.RESOLVED:
            logger.info(f"Handshake {code[:8]}... already resolved, ignoring repeat confirmation")
            return ConfirmOutcome.ALREADY_RESOLVED

        entry.status = HandshakeStatus.RESOLVED
        entry.result = result
        for waiter in list(entry.waiters):
            if not waiter.done():
                waiter.set_result(entry)
        logger.info(f"Handshake {code[:8]}... resolved")
        return ConfirmOutcome.CONFIRMED

    async def await_resolution(self, code: str, max_wait: float) -> HandshakeOutcome:
        """Long-poll a handshake.

        Returns EXPIRED for unknown or timed-out codes, RESOLVED with the result
        (and drops the entry), or PENDING when max_wait elapses first; a PENDING
        answer leaves the entry untouched for the next poll.
        """
        entry = self._live_entry(code)
        if entry is None:
            return HandshakeOutcome(HandshakeStatus.EXPIRED)
        if entry.status is HandshakeStatus.RESOLVED:
            return self._deliver(entry)

        waiter = asyncio.get_running_loop().create_future()
        entry.waiters.add(waiter)
        try:
            woken = await asyncio.wait_for(waiter, timeout=max_wait)
        except asyncio.TimeoutError:
            return HandshakeOutcome(HandshakeStatus.PENDING)
        finally:
            entry.waiters.discard(waiter)

        if woken.status is HandshakeStatus.RESOLVED:
            return self._deliver(woken)
        return HandshakeOutcome(HandshakeStatus.EXPIRED)

    def sweep(self) -> int:
        """Remove every timed-out entry; returns how many were dropped."""
        removed = 0
        for code in self.registry.codes():
            entry = self.registry.get(code)
            if entry is not None and self._is_timed_out(entry):
                self._expire(code)
                removed += 1
        return removed

    def _deliver(self, entry: PendingAuth) -> HandshakeOutcome:
        # Concurrent waiters all hold the entry; only the first removes it.
        if self.registry.get(entry.code) is entry:
            self.registry.remove(entry.code)
            if entry.expiry_handle is not None:
                entry.expiry_handle.cancel()
            logger.info(f"Handshake {entry.code[:8]}... delivered")
        return HandshakeOutcome(HandshakeStatus.RESOLVED, entry.result)

    def _is_timed_out(self, entry: PendingAuth) -> bool:
        return self._clock() - entry.created_at >= self.timeout_seconds

    def _live_entry(self, code: str) -> PendingAuth | None:
        entry = self.registry.get(code)
        if entry is not None and self._is_timed_out(entry):
            self._expire(code)
            return None
        return entry

    def _expire(self, code: str) -> None:
        entry = self.registry.remove(code)
        if entry is None:
            return
        if entry.expiry_handle is not None:
            entry.expiry_handle.cancel()
        if entry.status is HandshakeStatus.PENDING:
            entry.status = HandshakeStatus.EXPIRED
            logger.info(f"Handshake {code[:8]}... expired")
        else:
            logger.info(f"Handshake {code[:8]}... dropped undelivered after timeout")
        for waiter in list(entry.waiters):
            if not waiter.done():
                waiter.set_result(entry)
