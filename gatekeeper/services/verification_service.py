"""One-time verification codes with bounded attempts and lockout.

Store layout per ``(purpose, subject)`` challenge:
- ``ver:{purpose}:{subject}:code``: HMAC of the code, expires with the code;
- ``ver:{purpose}:{subject}:attempts``: failed-attempt counter, TTL set on
  the first failure only;
- ``ver:{purpose}:{subject}:locked``: lock marker with its own TTL.

Verification runs as one Lua script (lock check, existence check, compare,
mutate) so concurrent attempts on the same challenge cannot both slip under
the lockout threshold. Store failures are not recovered here: a verification
that cannot reach the store raises ``StoreUnavailableError`` instead of
guessing an outcome.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from enum import Enum

from gatekeeper.adapters.store.base import AbstractSharedStore
from gatekeeper.core.config import VerificationSettings
from gatekeeper.core.errors import StoreErrorKind, StoreUnavailableError
from gatekeeper.core.logging import hash_identifier

logger = logging.getLogger(__name__)

MIN_CODE_LENGTH = 1
MAX_CODE_LENGTH = 12

# KEYS: 1=code, 2=attempts, 3=lock
# ARGV: 1=code hash, 2=code ttl
CREATE_LUA = """
redis.call("SET", KEYS[1], ARGV[1], "EX", tonumber(ARGV[2]))
redis.call("DEL", KEYS[2], KEYS[3])
return 1
"""

# KEYS: 1=code, 2=attempts, 3=lock
# ARGV: 1=candidate hash, 2=max attempts, 3=attempts ttl, 4=lockout seconds
VERIFY_LUA = """
if redis.call("EXISTS", KEYS[3]) == 1 then
  return {"locked", redis.call("TTL", KEYS[3])}
end

local stored = redis.call("GET", KEYS[1])
if not stored then
  return {"expired"}
end

if stored == ARGV[1] then
  redis.call("DEL", KEYS[1], KEYS[2])
  return {"ok"}
end

local attempts = redis.call("INCR", KEYS[2])
if attempts == 1 then
  redis.call("EXPIRE", KEYS[2], tonumber(ARGV[3]))
end
if attempts >= tonumber(ARGV[2]) then
  redis.call("SET", KEYS[3], "1", "EX", tonumber(ARGV[4]))
  return {"failed_locked", attempts, redis.call("TTL", KEYS[3])}
end
return {"failed", attempts}
"""


class VerificationStatus(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    LOCKED = "locked"
    FAILED = "failed"
    FAILED_LOCKED = "failed_locked"


@dataclass(frozen=True)
class VerificationOutcome:
    """Result of a verification attempt.

    Attributes:
        status: Outcome kind.
        attempts: Failed attempts so far (``failed``/``failed_locked``).
        retry_after_seconds: Remaining lockout (``locked``/``failed_locked``).
    """

    status: VerificationStatus
    attempts: int | None = None
    retry_after_seconds: int | None = None

    @classmethod
    def ok(cls) -> "VerificationOutcome":
        return cls(VerificationStatus.OK)

    @classmethod
    def expired(cls) -> "VerificationOutcome":
        return cls(VerificationStatus.EXPIRED)

    @classmethod
    def locked(cls, retry_after_seconds: int) -> "VerificationOutcome":
        return cls(VerificationStatus.LOCKED, retry_after_seconds=retry_after_seconds)

    @classmethod
    def failed(cls, attempts: int) -> "VerificationOutcome":
        return cls(VerificationStatus.FAILED, attempts=attempts)

    @classmethod
    def failed_locked(cls, attempts: int, retry_after_seconds: int) -> "VerificationOutcome":
        return cls(
            VerificationStatus.FAILED_LOCKED,
            attempts=attempts,
            retry_after_seconds=retry_after_seconds,
        )


@dataclass(frozen=True)
class IssuedCode:
    """A freshly generated code. ``code`` must only go to the delivery channel."""

    code: str
    expiry_seconds: int


def generate_numeric_code(length: int) -> str:
    """Draw a code uniformly from ``10**(length-1) .. 10**length - 1``.

    The leading digit is never zero, so the string is always ``length``
    digits long.
    """

    if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
        raise ValueError(f"length must be between {MIN_CODE_LENGTH} and {MAX_CODE_LENGTH}")
    low = 10 ** (length - 1)
    high = 10**length - 1
    return str(low + secrets.randbelow(high - low + 1))


def challenge_keys(purpose: str, subject_id: str) -> tuple[str, str, str]:
    base = f"ver:{purpose}:{subject_id}"
    return f"{base}:code", f"{base}:attempts", f"{base}:locked"


class VerificationService:
    """Issue, verify and revoke one-time codes stored in the shared store."""

    def __init__(self, store: AbstractSharedStore, cfg: VerificationSettings) -> None:
        self._store = store
        self._key = cfg.hmac_key.encode()
        self._code_length = cfg.code_length
        self._code_ttl = cfg.code_ttl_seconds
        self._max_attempts = cfg.max_attempts
        self._attempts_ttl = cfg.effective_attempts_ttl_seconds
        self._lockout = cfg.lockout_seconds

    def hash_code(self, purpose: str, subject_id: str, code: str) -> str:
        """Keyed hash of a code, bound to its challenge."""
        message = f"{purpose}:{subject_id}:{code}".encode()
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    @staticmethod
    def _check_identity(subject_id: str, purpose: str) -> None:
        if not subject_id:
            raise ValueError("subject_id must be a non-empty string")
        if not purpose:
            raise ValueError("purpose must be a non-empty string")

    async def create_code(
        self,
        subject_id: str,
        purpose: str,
        *,
        length: int | None = None,
        ttl_seconds: int | None = None,
    ) -> IssuedCode:
        """Issue a new code, replacing any outstanding challenge.

        Only the keyed hash is stored. Any previous attempt counter and lock
        for the challenge are cleared in the same transaction.

        Raises:
            ValueError: On empty identifiers, bad length or TTL.
            StoreUnavailableError: If the store cannot be reached.
        """
        self._check_identity(subject_id, purpose)
        length = length or self._code_length
        ttl = ttl_seconds or self._code_ttl
        if ttl < 1:
            raise ValueError("ttl_seconds must be >= 1")

        code = generate_numeric_code(length)
        keys = challenge_keys(purpose, subject_id)
        await self._store.run_atomic(CREATE_LUA, keys, [self.hash_code(purpose, subject_id, code), ttl])

        logger.info(
            "verification.created",
            extra={
                "purpose": purpose,
                "subject_hash": hash_identifier(subject_id),
                "expiry_s": ttl,
            },
        )
        return IssuedCode(code=code, expiry_seconds=ttl)

    async def verify_code(
        self,
        subject_id: str,
        purpose: str,
        candidate: str,
        *,
        max_attempts: int | None = None,
        attempts_ttl_seconds: int | None = None,
        lockout_seconds: int | None = None,
    ) -> VerificationOutcome:
        """Check ``candidate`` against the stored challenge atomically.

        Order: an active lock wins over everything, then a missing code is
        ``expired``, then the hashes are compared.

        Raises:
            ValueError: On empty identifiers or invalid limits.
            StoreUnavailableError: If the store cannot be reached.
        """
        self._check_identity(subject_id, purpose)
        max_attempts = max_attempts or self._max_attempts
        attempts_ttl = attempts_ttl_seconds or self._attempts_ttl
        lockout = lockout_seconds or self._lockout
        if max_attempts < 1 or attempts_ttl < 1 or lockout < 1:
            raise ValueError("max_attempts, attempts_ttl_seconds and lockout_seconds must be >= 1")

        keys = challenge_keys(purpose, subject_id)
        reply = await self._store.run_atomic(
            VERIFY_LUA,
            keys,
            [self.hash_code(purpose, subject_id, candidate), max_attempts, attempts_ttl, lockout],
        )
        outcome = self._parse_reply(reply, lockout)
        self._log_outcome(purpose, subject_id, outcome)
        return outcome

    async def revoke(self, subject_id: str, purpose: str) -> None:
        """Delete code, attempt counter and lock. Safe to call repeatedly."""
        self._check_identity(subject_id, purpose)
        removed = await self._store.delete(*challenge_keys(purpose, subject_id))
        logger.info(
            "verification.revoked",
            extra={
                "purpose": purpose,
                "subject_hash": hash_identifier(subject_id),
                "removed": removed,
            },
        )

    @staticmethod
    def _remaining_lock(ttl: int | str, lockout: int) -> int:
        # A lock without expiry (-1) should not exist; report the full lockout.
        value = int(ttl)
        return value if value > 0 else lockout

    def _parse_reply(self, reply: object, lockout: int) -> VerificationOutcome:
        if not isinstance(reply, (list, tuple)) or not reply:
            raise StoreUnavailableError.from_kind(StoreErrorKind.OTHER, "verify")

        status = str(reply[0])
        try:
            if status == VerificationStatus.OK.value:
                return VerificationOutcome.ok()
            if status == VerificationStatus.EXPIRED.value:
                return VerificationOutcome.expired()
            if status == VerificationStatus.LOCKED.value:
                return VerificationOutcome.locked(self._remaining_lock(reply[1], lockout))
            if status == VerificationStatus.FAILED.value:
                return VerificationOutcome.failed(int(reply[1]))
            if status == VerificationStatus.FAILED_LOCKED.value:
                return VerificationOutcome.failed_locked(
                    int(reply[1]), self._remaining_lock(reply[2], lockout)
                )
        except (IndexError, TypeError, ValueError) as exc:
            raise StoreUnavailableError.from_kind(StoreErrorKind.OTHER, "verify") from exc

        raise StoreUnavailableError.from_kind(StoreErrorKind.OTHER, "verify")

    @staticmethod
    def _log_outcome(purpose: str, subject_id: str, outcome: VerificationOutcome) -> None:
        extra = {
            "purpose": purpose,
            "subject_hash": hash_identifier(subject_id),
            "status": outcome.status.value,
            "attempts": outcome.attempts,
            "retry_after_s": outcome.retry_after_seconds,
        }
        if outcome.status is VerificationStatus.OK:
            logger.info("verification.verified", extra=extra)
        elif outcome.status in (VerificationStatus.LOCKED, VerificationStatus.FAILED_LOCKED):
            logger.warning("verification.locked", extra=extra)
        else:
            logger.info("verification.rejected", extra=extra)
