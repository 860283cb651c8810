import hashlib

import pytest

from app.application.migration_rate_limit import (
    CooldownEntry,
    MigrationCooldownTracker,
    MigrationUploadRateLimiter,
    RateLimitEntry,
    migration_upload_rate_limit,
    rate_limit_key,
)
from app.errors import AuthError, RateLimitedError
from app.infra.state_store import InMemoryStateStore

HOUR = 60 * 60
DAY = 24 * HOUR
T0 = 1_700_000_000.0


@pytest.fixture
def limiter() -> MigrationUploadRateLimiter:
    return MigrationUploadRateLimiter(InMemoryStateStore[RateLimitEntry](), clock=lambda: T0)


@pytest.fixture
def cooldowns() -> MigrationCooldownTracker:
    return MigrationCooldownTracker(InMemoryStateStore[CooldownEntry](), clock=lambda: T0)


def test_rate_limit_key_hashes_credential() -> None:
    key = rate_limit_key("alpha", "secret-api-key")
    assert key.startswith("alpha:")
    assert "secret-api-key" not in key
    assert key == "alpha:" + hashlib.sha256(b"secret-api-key").hexdigest()
    assert rate_limit_key("alpha", "secret-api-key") == key
    assert rate_limit_key("beta", "secret-api-key") != key


def test_rate_limit_key_requires_parts() -> None:
    with pytest.raises(ValueError):
        rate_limit_key("", "key")
    with pytest.raises(ValueError):
        rate_limit_key("alpha", "")


class TestUploadRateLimiter:
    @pytest.mark.anyio
    async def test_three_attempts_then_rejected(self, limiter) -> None:
        for expected in (1, 2, 3):
            decision = await limiter.hit("alpha", "k", now=T0 + expected)
            assert decision.allowed
            assert decision.attempt_count == expected

        decision = await limiter.hit("alpha", "k", now=T0 + 10 * 60)

        assert not decision.allowed
        assert decision.attempt_count == 3
        assert decision.retry_after > 0
        assert decision.retry_after == decision.remaining_minutes * 60
        assert decision.next_attempt_at.endswith("Z")

    @pytest.mark.anyio
    async def test_retry_after_rounds_minutes_up(self, limiter) -> None:
        for _ in range(3):
            await limiter.hit("alpha", "k", now=T0)

        decision = await limiter.hit("alpha", "k", now=T0 + 30)

        # 59.5 minutes remaining
        assert decision.remaining_minutes == 60
        assert decision.retry_after == 3600

    @pytest.mark.anyio
    async def test_rejection_does_not_move_window(self, limiter) -> None:
        for _ in range(3):
            await limiter.hit("alpha", "k", now=T0)
        await limiter.hit("alpha", "k", now=T0 + 100)

        decision = await limiter.hit("alpha", "k", now=T0 + HOUR)

        assert decision.allowed
        assert decision.attempt_count == 1

    @pytest.mark.anyio
    async def test_count_resets_after_window(self, limiter) -> None:
        await limiter.hit("alpha", "k", now=T0)
        await limiter.hit("alpha", "k", now=T0 + 1)

        decision = await limiter.hit("alpha", "k", now=T0 + 1 + HOUR)

        assert decision.allowed
        assert decision.attempt_count == 1

    @pytest.mark.anyio
    async def test_keys_are_independent(self, limiter) -> None:
        for _ in range(3):
            await limiter.hit("alpha", "k1", now=T0)

        assert (await limiter.hit("alpha", "k2", now=T0)).allowed
        assert (await limiter.hit("beta", "k1", now=T0)).allowed
        assert not (await limiter.hit("alpha", "k1", now=T0)).allowed

    @pytest.mark.anyio
    async def test_sweep_evicts_entries_older_than_window(self, limiter) -> None:
        await limiter.hit("alpha", "old", now=T0)
        await limiter.hit("alpha", "new", now=T0 + HOUR)

        removed = await limiter.sweep(now=T0 + HOUR + 1)

        assert removed == 1
        assert (await limiter.hit("alpha", "new", now=T0 + HOUR + 2)).attempt_count == 2


class TestCooldownTracker:
    @pytest.mark.anyio
    async def test_no_cooldown_without_migration(self, cooldowns) -> None:
        status = await cooldowns.check_migration_cooldown("alpha")
        assert not status.on_cooldown
        assert status.remaining_time_ms is None

    @pytest.mark.anyio
    async def test_cooldown_by_api_key_right_after_update(self, cooldowns) -> None:
        await cooldowns.update_migration_cooldown("alpha", "k", now=T0)

        status = await cooldowns.check_migration_cooldown_by_api_key("alpha", "k", now=T0 + 1)

        assert status.on_cooldown
        assert status.remaining_time_ms == (DAY - 1) * 1000

    @pytest.mark.anyio
    async def test_tenant_cooldown_without_api_key(self, cooldowns) -> None:
        await cooldowns.update_migration_cooldown("alpha", now=T0)

        assert (await cooldowns.check_migration_cooldown("alpha", now=T0)).on_cooldown
        assert not (
            await cooldowns.check_migration_cooldown_by_api_key("alpha", "k", now=T0)
        ).on_cooldown
        assert not (await cooldowns.check_migration_cooldown("beta", now=T0)).on_cooldown

    @pytest.mark.anyio
    async def test_cooldown_expires_after_a_day(self, cooldowns) -> None:
        await cooldowns.update_migration_cooldown("alpha", "k", now=T0)

        assert not (await cooldowns.check_migration_cooldown("alpha", now=T0 + DAY)).on_cooldown
        assert await cooldowns.sweep(now=T0 + DAY) == 2


class TestRateLimitDependency:
    @pytest.mark.anyio
    async def test_missing_credentials_unauthorized(self, limiter) -> None:
        with pytest.raises(AuthError):
            await migration_upload_rate_limit(
                x_api_key=None, x_server_name="alpha", limiter=limiter
            )
        with pytest.raises(AuthError):
            await migration_upload_rate_limit(x_api_key="k", x_server_name=" ", limiter=limiter)

    @pytest.mark.anyio
    async def test_fourth_attempt_raises_429_with_details(self, limiter) -> None:
        for _ in range(3):
            await migration_upload_rate_limit(x_api_key="k", x_server_name="alpha", limiter=limiter)

        with pytest.raises(RateLimitedError) as exc_info:
            await migration_upload_rate_limit(x_api_key="k", x_server_name="alpha", limiter=limiter)

        assert exc_info.value.status_code == 429
        assert exc_info.value.details["retryAfter"] == 3600
        assert exc_info.value.details["nextAttemptAt"].endswith("Z")
        assert "60 minutes" in exc_info.value.message
