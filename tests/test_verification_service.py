"""Verification code engine against fake Redis running the real scripts."""

import asyncio
from collections import Counter
from unittest.mock import AsyncMock

import pytest

from gatekeeper.core.config import VerificationSettings
from gatekeeper.core.errors import StoreErrorKind, StoreUnavailableError
from gatekeeper.services.verification_service import (
    VerificationService,
    VerificationStatus,
    challenge_keys,
    generate_numeric_code,
)

WRONG = "000000"


def _settings(**overrides) -> VerificationSettings:
    values = {"hmac_key": "unit-test-key", "code_length": 6, "max_attempts": 5, "lockout_seconds": 3600}
    values.update(overrides)
    return VerificationSettings(**values)


@pytest.fixture
def service(store) -> VerificationService:
    return VerificationService(store, _settings())


class TestCodeGeneration:
    @pytest.mark.parametrize("length", [1, 4, 6, 10, 12])
    def test_length_and_no_leading_zero(self, length: int) -> None:
        for _ in range(50):
            code = generate_numeric_code(length)
            assert len(code) == length
            assert code.isdigit()
            assert code[0] != "0"

    @pytest.mark.parametrize("length", [0, 13, -1])
    def test_rejects_out_of_range_length(self, length: int) -> None:
        with pytest.raises(ValueError):
            generate_numeric_code(length)

    def test_hash_is_bound_to_purpose_and_subject(self, service: VerificationService) -> None:
        digest = service.hash_code("signup-email", "a@b.com", "123456")

        assert digest == service.hash_code("signup-email", "a@b.com", "123456")
        assert digest != service.hash_code("password-reset", "a@b.com", "123456")
        assert digest != service.hash_code("signup-email", "c@d.com", "123456")
        assert "123456" not in digest


class TestCreateCode:
    @pytest.mark.asyncio
    async def test_stores_only_the_hash(self, service: VerificationService, store) -> None:
        issued = await service.create_code("a@b.com", "signup-email")
        code_key, _, _ = challenge_keys("signup-email", "a@b.com")

        stored = await store.get(code_key)
        assert stored == service.hash_code("signup-email", "a@b.com", issued.code)
        assert issued.code not in stored
        assert issued.expiry_seconds == 600
        assert 0 < await store.ttl(code_key) <= 600

    @pytest.mark.asyncio
    async def test_custom_length_and_ttl(self, service: VerificationService) -> None:
        issued = await service.create_code("a@b.com", "signup-email", length=8, ttl_seconds=120)

        assert len(issued.code) == 8
        assert issued.expiry_seconds == 120

    @pytest.mark.asyncio
    async def test_new_code_replaces_previous(self, service: VerificationService) -> None:
        first = await service.create_code("a@b.com", "signup-email")
        second = await service.create_code("a@b.com", "signup-email")

        if first.code != second.code:
            outcome = await service.verify_code("a@b.com", "signup-email", first.code)
            assert outcome.status is VerificationStatus.FAILED
        outcome = await service.verify_code("a@b.com", "signup-email", second.code)
        assert outcome.status is VerificationStatus.OK

    @pytest.mark.asyncio
    async def test_create_clears_attempts_and_lock(self, service: VerificationService) -> None:
        await service.create_code("a@b.com", "signup-email")
        for _ in range(5):
            await service.verify_code("a@b.com", "signup-email", WRONG)

        issued = await service.create_code("a@b.com", "signup-email")
        outcome = await service.verify_code("a@b.com", "signup-email", issued.code)
        assert outcome.status is VerificationStatus.OK

    @pytest.mark.asyncio
    @pytest.mark.parametrize("subject,purpose", [("", "signup-email"), ("a@b.com", "")])
    async def test_rejects_empty_identity(self, service: VerificationService, subject, purpose) -> None:
        with pytest.raises(ValueError):
            await service.create_code(subject, purpose)


class TestVerifyCode:
    @pytest.mark.asyncio
    async def test_correct_code_is_single_use(self, service: VerificationService) -> None:
        issued = await service.create_code("a@b.com", "signup-email")

        assert (await service.verify_code("a@b.com", "signup-email", issued.code)).status is VerificationStatus.OK
        again = await service.verify_code("a@b.com", "signup-email", issued.code)
        assert again.status is VerificationStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_missing_code_is_expired(self, service: VerificationService) -> None:
        outcome = await service.verify_code("nobody@b.com", "signup-email", "123456")

        assert outcome.status is VerificationStatus.EXPIRED
        assert outcome.attempts is None

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempts(self, service: VerificationService, store) -> None:
        await service.create_code("a@b.com", "signup-email")

        first = await service.verify_code("a@b.com", "signup-email", WRONG)
        second = await service.verify_code("a@b.com", "signup-email", WRONG)

        assert (first.status, first.attempts) == (VerificationStatus.FAILED, 1)
        assert (second.status, second.attempts) == (VerificationStatus.FAILED, 2)
        _, attempts_key, _ = challenge_keys("signup-email", "a@b.com")
        assert 0 < await store.ttl(attempts_key) <= 600

    @pytest.mark.asyncio
    async def test_lockout_scenario(self, service: VerificationService) -> None:
        issued = await service.create_code("a@b.com", "signup-email")

        outcomes = [await service.verify_code("a@b.com", "signup-email", WRONG) for _ in range(5)]
        assert [o.status for o in outcomes[:4]] == [VerificationStatus.FAILED] * 4
        assert outcomes[4].status is VerificationStatus.FAILED_LOCKED
        assert outcomes[4].attempts == 5
        assert 0 < outcomes[4].retry_after_seconds <= 3600

        sixth = await service.verify_code("a@b.com", "signup-email", issued.code)
        assert sixth.status is VerificationStatus.LOCKED
        assert 0 < sixth.retry_after_seconds <= 3600

    @pytest.mark.asyncio
    async def test_lock_lapses_after_lockout(self, service: VerificationService) -> None:
        await service.create_code("a@b.com", "login", ttl_seconds=1)

        locked = await service.verify_code("a@b.com", "login", WRONG, max_attempts=1, lockout_seconds=1)
        assert locked.status is VerificationStatus.FAILED_LOCKED
        assert (await service.verify_code("a@b.com", "login", WRONG)).status is VerificationStatus.LOCKED

        await asyncio.sleep(1.2)

        after = await service.verify_code("a@b.com", "login", WRONG)
        assert after.status is VerificationStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_correct_code_accepted_once_lock_lapses(self, service: VerificationService) -> None:
        issued = await service.create_code("a@b.com", "login")
        await service.verify_code("a@b.com", "login", WRONG, max_attempts=1, lockout_seconds=1)
        assert (await service.verify_code("a@b.com", "login", issued.code)).status is VerificationStatus.LOCKED

        await asyncio.sleep(1.2)

        outcome = await service.verify_code("a@b.com", "login", issued.code)
        assert outcome.status is VerificationStatus.OK

    @pytest.mark.asyncio
    async def test_per_call_limits_override_defaults(self, service: VerificationService) -> None:
        await service.create_code("a@b.com", "login")

        first = await service.verify_code("a@b.com", "login", WRONG, max_attempts=2, lockout_seconds=30)
        second = await service.verify_code("a@b.com", "login", WRONG, max_attempts=2, lockout_seconds=30)

        assert first.status is VerificationStatus.FAILED
        assert second.status is VerificationStatus.FAILED_LOCKED
        assert second.retry_after_seconds <= 30

    @pytest.mark.asyncio
    async def test_challenges_are_isolated_by_purpose(self, service: VerificationService) -> None:
        issued = await service.create_code("a@b.com", "signup-email")

        outcome = await service.verify_code("a@b.com", "password-reset", issued.code)
        assert outcome.status is VerificationStatus.EXPIRED
        assert (await service.verify_code("a@b.com", "signup-email", issued.code)).status is VerificationStatus.OK

    @pytest.mark.asyncio
    async def test_concurrent_wrong_attempts_lock_exactly_once(self, service: VerificationService) -> None:
        await service.create_code("a@b.com", "signup-email")

        outcomes = await asyncio.gather(
            *(service.verify_code("a@b.com", "signup-email", WRONG) for _ in range(12))
        )
        counts = Counter(o.status for o in outcomes)

        assert counts[VerificationStatus.FAILED] == 4
        assert counts[VerificationStatus.FAILED_LOCKED] == 1
        assert counts[VerificationStatus.LOCKED] == 7

    @pytest.mark.asyncio
    async def test_revoke_clears_everything(self, service: VerificationService, store) -> None:
        issued = await service.create_code("a@b.com", "signup-email")
        await service.verify_code("a@b.com", "signup-email", WRONG)

        await service.revoke("a@b.com", "signup-email")
        await service.revoke("a@b.com", "signup-email")

        for key in challenge_keys("signup-email", "a@b.com"):
            assert await store.get(key) is None
        outcome = await service.verify_code("a@b.com", "signup-email", issued.code)
        assert outcome.status is VerificationStatus.EXPIRED


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_outage_is_an_error_not_an_outcome(self) -> None:
        store = AsyncMock()
        store.run_atomic.side_effect = StoreUnavailableError.from_kind(StoreErrorKind.TIMEOUT, "eval")
        service = VerificationService(store, _settings())

        with pytest.raises(StoreUnavailableError):
            await service.verify_code("a@b.com", "signup-email", "123456")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [None, [], ["bogus"], ["failed"], ["failed", "x"]])
    async def test_malformed_reply_is_store_error(self, reply) -> None:
        store = AsyncMock()
        store.run_atomic.return_value = reply
        service = VerificationService(store, _settings())

        with pytest.raises(StoreUnavailableError):
            await service.verify_code("a@b.com", "signup-email", "123456")

    @pytest.mark.asyncio
    async def test_lock_without_ttl_reports_full_lockout(self) -> None:
        store = AsyncMock()
        store.run_atomic.return_value = ["locked", -1]
        service = VerificationService(store, _settings())

        outcome = await service.verify_code("a@b.com", "signup-email", "123456")
        assert outcome.status is VerificationStatus.LOCKED
        assert outcome.retry_after_seconds == 3600
