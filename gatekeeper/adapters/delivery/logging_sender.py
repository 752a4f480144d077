"""Delivery stand-in that only records that a code was dispatched."""

from __future__ import annotations

import logging

from gatekeeper.adapters.delivery.base import AbstractCodeSender
from gatekeeper.core.logging import hash_identifier

logger = logging.getLogger(__name__)


class LoggingCodeSender(AbstractCodeSender):
    """Log delivery requests without the code or the raw recipient."""

    def __init__(self) -> None:
        self.sent_count = 0

    async def send(self, recipient: str, purpose: str, code: str, *, expiry_seconds: int) -> None:
        self.sent_count += 1
        logger.info(
            "delivery.requested",
            extra={
                "recipient_hash": hash_identifier(recipient),
                "purpose": purpose,
                "code_length": len(code),
                "expiry_s": expiry_seconds,
            },
        )
