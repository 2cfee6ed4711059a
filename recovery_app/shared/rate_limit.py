# caminho: recovery_app/shared/rate_limit.py
# Funções:
# - RateLimitDecision: resultado da consulta (permitido, restantes, cooldown)
# - RecoveryRateLimiter: contrato check/record/acquire por (sujeito, ação)
# - RedisRecoveryRateLimiter: janelas deslizantes em sorted sets com WATCH/MULTI
# - NullRecoveryRateLimiter: implementação no-op para testes

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional, Protocol
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import WatchError

from recovery_app.config.constants import RATE_LIMIT_WATCH_RETRIES
from recovery_app.config.policy import RateLimitPolicy
from recovery_app.shared.clock import Clock, utcnow
from recovery_app.shared.logging import log_warning


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    allowed: bool
    attempts_remaining: int
    cooldown_until: Optional[datetime] = None

    def retry_in_seconds(self, now: datetime) -> int:
        if self.cooldown_until is None:
            return 0
        return max(0, int((self.cooldown_until - now).total_seconds() + 0.999))


class RecoveryRateLimiter(Protocol):
    async def check(self, subject: str, action: str) -> RateLimitDecision: ...

    async def record(self, subject: str, action: str) -> None: ...

    async def acquire(self, subject: str, action: str) -> RateLimitDecision: ...


class RedisRecoveryRateLimiter:
    """Janelas deslizantes (hora/dia/semana/mês) guardadas em um sorted set por chave.

    Cada tentativa vira um membro com score igual ao timestamp. A contagem de uma
    janela considera apenas scores estritamente maiores que ``agora - janela``.
    ``acquire`` faz a consulta e o registro dentro de uma transação otimista, de
    modo que duas chamadas concorrentes nunca passam ambas do limite.
    """

    def __init__(
        self,
        client: redis.Redis,
        policies: Mapping[str, RateLimitPolicy],
        *,
        clock: Clock = utcnow,
        prefix: str = 'mfa:ratelimit',
    ) -> None:
        self._client = client
        self._policies = policies
        self._clock = clock
        self._prefix = prefix

    async def check(self, subject: str, action: str) -> RateLimitDecision:
        policy = self._policy(action)
        now = self._clock().timestamp()
        return await self._evaluate(self._client, self._key(subject, action), policy, now)

    async def record(self, subject: str, action: str) -> None:
        policy = self._policy(action)
        now = self._clock().timestamp()
        async with self._client.pipeline(transaction=True) as pipe:
            self._queue_record(pipe, self._key(subject, action), policy, now)
            await pipe.execute()

    async def acquire(self, subject: str, action: str) -> RateLimitDecision:
        policy = self._policy(action)
        key = self._key(subject, action)

        async with self._client.pipeline(transaction=True) as pipe:
            for _ in range(RATE_LIMIT_WATCH_RETRIES):
                now = self._clock().timestamp()
                try:
                    await pipe.watch(key)
                    decision = await self._evaluate(pipe, key, policy, now)
                    if not decision.allowed:
                        await pipe.reset()
                        return decision

                    pipe.multi()
                    self._queue_record(pipe, key, policy, now)
                    await pipe.execute()
                    return RateLimitDecision(True, max(0, decision.attempts_remaining - 1))
                except WatchError:
                    continue

        # contenção persistente na mesma chave: nega em vez de arriscar ultrapassar o limite
        log_warning('RATE_LIMIT_CONTENTION', {'action': action, 'subject': subject})
        now = self._clock()
        return RateLimitDecision(False, 0, datetime.fromtimestamp(now.timestamp() + 1, tz=timezone.utc))

    async def reset(self, subject: str, action: str) -> None:
        await self._client.delete(self._key(subject, action))

    async def _evaluate(self, conn, key: str, policy: RateLimitPolicy, now: float) -> RateLimitDecision:
        remaining: Optional[int] = None
        cooldown: Optional[float] = None

        for window in policy.windows:
            lower = f'({now - window.seconds}'
            count = int(await conn.zcount(key, lower, '+inf'))
            left = window.max_attempts - count
            remaining = left if remaining is None else min(remaining, left)
            if left > 0:
                continue

            # a janela reabre quando a tentativa na posição (count - max) sair dela
            oldest = await conn.zrangebyscore(
                key, lower, '+inf', start=count - window.max_attempts, num=1, withscores=True
            )
            if oldest:
                reopen = float(oldest[0][1]) + window.seconds
                cooldown = reopen if cooldown is None else max(cooldown, reopen)

        remaining = max(0, remaining or 0)
        if cooldown is None:
            return RateLimitDecision(True, remaining)
        return RateLimitDecision(False, 0, datetime.fromtimestamp(cooldown, tz=timezone.utc))

    def _queue_record(self, pipe, key: str, policy: RateLimitPolicy, now: float) -> None:
        retention = policy.retention_seconds
        pipe.zremrangebyscore(key, '-inf', now - retention)
        pipe.zadd(key, {f'{now:.6f}:{uuid4().hex}': now})
        pipe.expire(key, retention)

    def _policy(self, action: str) -> RateLimitPolicy:
        try:
            return self._policies[action]
        except KeyError:
            raise ValueError(f'Ação sem política de rate limit: {action}') from None

    def _key(self, subject: str, action: str) -> str:
        return f'{self._prefix}:{action}:{subject}'


class NullRecoveryRateLimiter:
    async def check(self, subject: str, action: str) -> RateLimitDecision:  # pragma: no cover - usado em testes
        return RateLimitDecision(True, 0)

    async def record(self, subject: str, action: str) -> None:  # pragma: no cover - usado em testes
        return None

    async def acquire(self, subject: str, action: str) -> RateLimitDecision:  # pragma: no cover - usado em testes
        return RateLimitDecision(True, 0)
