"""Code delivery interface.

Verification codes leave the service only through this interface; the
transport (email provider, SMS gateway) lives behind it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class AbstractCodeSender(ABC):
    """Interface for channels delivering one-time codes to users."""

    @abstractmethod
    async def send(self, recipient: str, purpose: str, code: str, *, expiry_seconds: int) -> None:
        """Deliver ``code`` to ``recipient``.

        Args:
            recipient: Address on the channel (email address, phone number).
            purpose: Challenge purpose, used to pick the message template.
            code: Raw one-time code.
            expiry_seconds: Code lifetime, for the message body.
        """
        raise NotImplementedError
