from __future__ import annotations

import time
from enum import Enum
from typing import Optional, Protocol

from sessionauth.logging import get_logger

logger = get_logger(__name__)


class RenewalDecision(str, Enum):
    INITIALIZE = "initialize"
    RENEW = "renew"
    NONE = "none"


class RenewableSession(Protocol):
    last_renewed: Optional[int]

    async def touch(self) -> None: ...


def now_millis() -> int:
    return int(time.time() * 1000)


class SessionRenewalPolicy:
    """Slides the session expiry once the session has been idle long enough."""

    def __init__(self, threshold_seconds: int = 15 * 60) -> None:
        self.threshold_ms = threshold_seconds * 1000

    def decide(self, last_renewed: Optional[int], now: int) -> RenewalDecision:
        if last_renewed is None:
            return RenewalDecision.INITIALIZE
        if now - last_renewed > self.threshold_ms:
            return RenewalDecision.RENEW
        return RenewalDecision.NONE

    async def apply(self, session: RenewableSession, now: Optional[int] = None) -> RenewalDecision:
        now = now_millis() if now is None else now
        decision = self.decide(session.last_renewed, now)
        if decision is RenewalDecision.RENEW:
            try:
                await session.touch()
            except Exception as exc:
                # The request continues on the old expiry
                logger.warning("session_touch_failed", error_type=type(exc).__name__, error=str(exc))
            session.last_renewed = now
        elif decision is RenewalDecision.INITIALIZE:
            session.last_renewed = now
        return decision
