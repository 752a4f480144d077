"""Server-side session records and propagation of durable user state.

Sessions live in the shared store as JSON under ``session:{id}`` with a TTL,
and every session id is registered in the ``user_sessions:{user_id}`` set so
a user's live sessions can be found without scanning.

When a profile handler commits a change (onboarding flag, preferences) it
calls ``propagate`` so every live session reflects it without waiting for the
client to refresh. Propagation is a per-record read-modify-write fan-out:
records are independent, a failure on one is logged and the others still get
updated.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gatekeeper.adapters.store.base import AbstractSharedStore
from gatekeeper.core.errors import StoreUnavailableError, ValidationAppError
from gatekeeper.core.logging import hash_identifier

logger = logging.getLogger(__name__)

# Fields a propagation patch may carry.
PATCHABLE_FIELDS = frozenset({"email_verified", "onboarding_completed", "preferences"})


class SessionRecord(BaseModel):
    """Session payload. Unknown fields are preserved on rewrite."""

    user_id: str
    email_verified: bool = False
    onboarding_completed: bool = False
    preferences: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


@dataclass(frozen=True)
class PropagationReport:
    """Counts of what ``propagate`` did, mostly for logs and tests."""

    updated: int = 0
    missing: int = 0
    failed: int = 0


def session_key(session_id: str) -> str:
    return f"session:{session_id}"


def user_sessions_key(user_id: str) -> str:
    return f"user_sessions:{user_id}"


def merge_session_patch(record: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``patch`` into a raw session record.

    Top-level fields are replaced; ``preferences`` is merged key by key so a
    partial preferences update keeps the other preferences.
    """

    merged = dict(record)
    for field, value in patch.items():
        if field == "preferences":
            current = merged.get("preferences")
            base = dict(current) if isinstance(current, Mapping) else {}
            base.update(value)
            merged["preferences"] = base
        else:
            merged[field] = value
    return merged


def validate_patch(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Reject empty patches and fields propagation does not own."""

    if not patch:
        raise ValidationAppError(code="empty_patch", message="patch must not be empty")
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValidationAppError(
            code="non_patchable_fields",
            message=f"patch contains non-patchable fields: {sorted(unknown)}",
        )
    if "preferences" in patch and not isinstance(patch["preferences"], Mapping):
        raise ValidationAppError(code="invalid_preferences", message="preferences patch must be a mapping")
    return dict(patch)


class SessionService:
    """Create, read, destroy and update session records."""

    def __init__(self, store: AbstractSharedStore, *, ttl_seconds: int) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        self._store = store
        self._ttl = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    async def create_session(
        self,
        user_id: str,
        *,
        email_verified: bool = False,
        onboarding_completed: bool = False,
        preferences: Mapping[str, Any] | None = None,
    ) -> str:
        """Store a new session for ``user_id`` and register it in the user's set.

        Returns:
            The new opaque session id.
        """
        if not user_id:
            raise ValueError("user_id must be a non-empty string")

        record = SessionRecord(
            user_id=user_id,
            email_verified=email_verified,
            onboarding_completed=onboarding_completed,
            preferences=dict(preferences or {}),
        )
        session_id = uuid.uuid4().hex
        await self._store.set_with_expiry(session_key(session_id), record.model_dump_json(), self._ttl)
        await self._store.add_to_set(user_sessions_key(user_id), session_id)
        await self._store.expire(user_sessions_key(user_id), self._ttl)

        logger.info("session.created", extra={"user_hash": hash_identifier(user_id)})
        return session_id

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Load a session record, or None when missing, expired or unreadable."""
        raw = await self._store.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return SessionRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("session.corrupt_record", extra={"session_ref": session_id[:8]})
            return None

    async def destroy_session(self, session_id: str) -> None:
        """Delete a session and unregister it. Missing sessions are ignored."""
        record = await self.get_session(session_id)
        if record is not None:
            await self._store.remove_from_set(user_sessions_key(record.user_id), session_id)
        await self._store.delete(session_key(session_id))

    async def propagate(self, user_id: str, patch: Mapping[str, Any]) -> PropagationReport:
        """Write ``patch`` into every live session of ``user_id``.

        Raises:
            ValidationAppError: If the patch is empty or touches non-patchable fields.
            StoreUnavailableError: If the user's session set cannot be read.
        """
        clean_patch = validate_patch(patch)
        session_ids = await self._store.members_of(user_sessions_key(user_id))
        if not session_ids:
            return PropagationReport()

        results = await asyncio.gather(
            *(self._update_one(user_id, sid, clean_patch) for sid in sorted(session_ids))
        )
        report = PropagationReport(
            updated=results.count("updated"),
            missing=results.count("missing"),
            failed=results.count("failed"),
        )
        logger.info(
            "session.propagated",
            extra={
                "user_hash": hash_identifier(user_id),
                "fields": sorted(clean_patch),
                "updated": report.updated,
                "missing": report.missing,
                "failed": report.failed,
            },
        )
        return report

    async def _update_one(self, user_id: str, session_id: str, patch: dict[str, Any]) -> str:
        key = session_key(session_id)
        try:
            raw = await self._store.get(key)
            if raw is None:
                # Expired or logged out; drop the stale membership.
                await self._store.remove_from_set(user_sessions_key(user_id), session_id)
                return "missing"

            record = json.loads(raw)
            if not isinstance(record, dict):
                raise ValueError("session record is not a JSON object")
            updated = merge_session_patch(record, patch)

            ttl = await self._store.ttl(key)
            if ttl == -2:
                # Vanished between the read and the TTL check; do not resurrect it.
                return "missing"
            await self._store.set_with_expiry(key, json.dumps(updated), ttl if ttl > 0 else self._ttl)
            return "updated"
        except (StoreUnavailableError, ValueError) as exc:
            logger.warning(
                "session.propagate_failed",
                extra={
                    "user_hash": hash_identifier(user_id),
                    "session_ref": session_id[:8],
                    "error_type": type(exc).__name__,
                },
            )
            return "failed"
