import asyncio
from datetime import timedelta

import pytest

from recovery_app.config.policy import OVERRIDE_RATE_LIMIT_ACTION
from recovery_app.shared.rate_limit import NullRecoveryRateLimiter


async def test_acquire_counts_down_and_blocks_at_hourly_limit(services):
    limiter = services.rate_limiter

    remaining = [(await limiter.acquire('user-1', 'email')).attempts_remaining for _ in range(5)]
    assert remaining == [4, 3, 2, 1, 0]

    blocked = await limiter.acquire('user-1', 'email')
    assert blocked.allowed is False
    assert blocked.attempts_remaining == 0
    # a janela reabre quando a tentativa mais antiga sair da última hora
    assert blocked.cooldown_until == services.clock() + timedelta(hours=1)


async def test_window_reopens_after_oldest_attempt_leaves(services):
    limiter = services.rate_limiter
    first_at = services.clock()
    await limiter.acquire('user-1', 'sms')
    for _ in range(4):
        services.clock.advance(minutes=10)
        await limiter.acquire('user-1', 'sms')

    blocked = await limiter.check('user-1', 'sms')
    assert blocked.allowed is False
    assert blocked.cooldown_until == first_at + timedelta(hours=1)

    services.clock.now = first_at + timedelta(hours=1, seconds=1)
    reopened = await limiter.check('user-1', 'sms')
    assert reopened.allowed is True
    assert reopened.attempts_remaining == 1


async def test_daily_window_applies_after_hourly_resets(services):
    limiter = services.rate_limiter
    for _ in range(2):
        for _ in range(5):
            assert (await limiter.acquire('user-1', 'email')).allowed
        services.clock.advance(hours=1, seconds=1)

    decision = await limiter.acquire('user-1', 'email')
    assert decision.allowed is False
    assert decision.retry_in_seconds(services.clock()) > 3600


async def test_identity_verification_weekly_window(services):
    limiter = services.rate_limiter
    for _ in range(3):
        assert (await limiter.acquire('user-1', 'identity_verification')).allowed
        services.clock.advance(days=1, seconds=1)

    decision = await limiter.check('user-1', 'identity_verification')
    assert decision.allowed is False
    # a 1ª tentativa só sai da janela semanal 7 dias depois de registrada
    assert decision.cooldown_until == services.clock() - timedelta(days=3, seconds=3) + timedelta(days=7)


async def test_subjects_and_actions_are_counted_separately(services):
    limiter = services.rate_limiter
    for _ in range(5):
        await limiter.acquire('user-1', 'email')

    assert (await limiter.check('user-1', 'email')).allowed is False
    assert (await limiter.check('user-1', 'sms')).allowed is True
    assert (await limiter.check('USER-1', 'email')).allowed is True


async def test_concurrent_acquire_never_exceeds_limit(services):
    limiter = services.rate_limiter
    decisions = await asyncio.gather(*(limiter.acquire('admin-1', OVERRIDE_RATE_LIMIT_ACTION) for _ in range(15)))

    allowed = sum(decision.allowed for decision in decisions)
    assert 1 <= allowed <= 10
    # só as tentativas aceitas foram gravadas
    assert await services.redis.zcard(f'mfa:ratelimit:{OVERRIDE_RATE_LIMIT_ACTION}:admin-1') == allowed


async def test_record_and_reset(services):
    limiter = services.rate_limiter
    for _ in range(5):
        await limiter.record('user-1', 'email')
    assert (await limiter.check('user-1', 'email')).allowed is False

    await limiter.reset('user-1', 'email')
    assert (await limiter.check('user-1', 'email')).attempts_remaining == 5


async def test_unknown_action_is_rejected(services):
    with pytest.raises(ValueError):
        await services.rate_limiter.check('user-1', 'carrier_pigeon')


async def test_null_limiter_always_allows():
    limiter = NullRecoveryRateLimiter()
    assert (await limiter.acquire('user-1', 'email')).allowed is True
