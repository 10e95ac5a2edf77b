"""
Integration layer for outbound messages.

A channel takes a rendered message and reports whether delivery succeeded.
In a production deployment these would be replaced by an SMTP relay or an
email/SMS provider API; the shipped channels only log.
"""

from __future__ import annotations

import logging
import random
import time
from typing import List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class DeliveryChannel(Protocol):
    def deliver(self, recipient: str, subject: str, content: str) -> bool:
        ...


class LoggingChannel:
    """Logs the message instead of sending it.  Always succeeds."""

    def deliver(self, recipient: str, subject: str, content: str) -> bool:
        logger.info("Sending email to %s: %s", recipient, subject)
        return True


class SimulatedChannel:
    """Stands in for a real email provider round trip.

    Succeeds with probability `success_rate`.  Pass a seeded `random.Random`
    for reproducible runs.
    """

    def __init__(
        self,
        success_rate: float = 0.9,
        delay: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.success_rate = success_rate
        self.delay = delay
        self.rng = rng or random.Random()

    def deliver(self, recipient: str, subject: str, content: str) -> bool:
        if self.delay:
            time.sleep(self.delay)
        ok = self.rng.random() < self.success_rate
        if ok:
            logger.info("Sending email to %s: %s", recipient, subject)
        else:
            logger.warning("Simulated delivery failure to %s: %s", recipient, subject)
        return ok


class OutboxChannel:
    """Keeps every message in memory instead of sending it."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: List[Tuple[str, str, str]] = []

    def deliver(self, recipient: str, subject: str, content: str) -> bool:
        self.sent.append((recipient, subject, content))
        return not self.fail
