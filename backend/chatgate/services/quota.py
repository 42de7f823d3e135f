"""Per-identity daily message quota."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models import Identity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


class QuotaLedger:
    """Daily cap with lazy reset on the first check of a new calendar day.

    Dates are server-local; per-user time zones are not considered.
    Reservations live in this process; the ledger is safe to share between
    the event loop and threadpool workers.
    """

    def __init__(self, *, turn_weight: int = 1, today: Callable[[], date] = date.today):
        if turn_weight < 1:
            raise ValueError("turn_weight must be a positive integer")
        self.turn_weight = turn_weight
        self._today = today
        # identity id -> units reserved by exchanges still waiting for a reply
        self._in_flight: dict[int, int] = {}
        self._lock = threading.Lock()

    def in_flight(self, identity_id: int) -> int:
        with self._lock:
            return self._in_flight.get(identity_id, 0)

    def check_and_reserve(self, db: Session, identity: Identity) -> QuotaDecision:
        """Reset a stale counter, then reserve one exchange against the daily limit.

        Units reserved by other in-flight exchanges of the same identity count as
        used. Nothing is reserved when the limit would be exceeded. An allowed
        decision must be settled with commit() or release().
        """
        self._reset_if_stale(db, identity)
        with self._lock:
            db.refresh(identity)
            pending = self._in_flight.get(identity.id, 0)
            used = int(identity.used_today or 0) + pending
            limit = int(identity.daily_limit or 0)
            if used + self.turn_weight > limit:
                logger.info(f"Quota exceeded for identity {identity.id}: {used}/{limit}")
                return QuotaDecision(allowed=False, used=used, limit=limit)
            self._in_flight[identity.id] = pending + self.turn_weight
        return QuotaDecision(allowed=True, used=used, limit=limit)

    def commit(self, db: Session, identity: Identity) -> int:
        """Charge one exchange and drop its reservation; returns the new used_today."""
        identity_id = identity.id
        with self._lock:
            try:
                # Single UPDATE so concurrent sends by the same identity do not lose increments.
                db.query(Identity).filter(Identity.id == identity_id).update(
                    {
                        Identity.used_today: Identity.used_today + self.turn_weight,
                        Identity.total_messages: Identity.total_messages + self.turn_weight,
                    },
                    synchronize_session=False,
                )
                db.commit()
            finally:
                self._drop_reservation(identity_id)
        db.refresh(identity)
        return int(identity.used_today)

    def release(self, identity_id: int) -> None:
        """Drop a reservation without charging (the exchange produced no reply)."""
        with self._lock:
            self._drop_reservation(identity_id)

    def _drop_reservation(self, identity_id: int) -> None:
        remaining = self._in_flight.get(identity_id, 0) - self.turn_weight
        if remaining > 0:
            self._in_flight[identity_id] = remaining
        else:
            self._in_flight.pop(identity_id, None)

    def _reset_if_stale(self, db: Session, identity: Identity) -> None:
        today = self._today()
        if identity.last_reset is not None and identity.last_reset >= today:
            return
        db.query(Identity).filter(
            Identity.id == identity.id,
            or_(Identity.last_reset.is_(None), Identity.last_reset < today),
        ).update(
            {Identity.used_today: 0, Identity.last_reset: today},
            synchronize_session=False,
        )
        db.commit()
        db.refresh(identity)
        logger.debug(f"Quota reset for identity {identity.id} on {today.isoformat()}")
