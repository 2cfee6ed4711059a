from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from fakeredis import FakeAsyncRedis
from pydantic import SecretStr

from recovery_app.application.access.use_cases import TemporaryAccessIssuer
from recovery_app.application.overrides.use_cases import AdminOverrideManager
from recovery_app.application.recovery.use_cases import RecoveryAdapters, RecoveryRequestManager
from recovery_app.config.policy import RecoveryPolicy, build_policy
from recovery_app.config.settings import Settings
from recovery_app.domain.recovery.verification import CredentialVerifier
from recovery_app.infrastructure.repositories.memory import (
    InMemoryAdminOverrideRepository,
    InMemoryAuditEventRepository,
    InMemoryRecoveryRequestRepository,
    InMemoryRoleLookup,
    InMemoryTemporaryAccessRepository,
)
from recovery_app.infrastructure.security.jwt import JWTService
from recovery_app.shared.audit_log import AuditLog
from recovery_app.shared.rate_limit import RedisRecoveryRateLimiter

SECRET_KEY = 'test-secret-key-with-at-least-32-bytes!!'

STAFF_ROLES = {
    'support-1': {'support'},
    'admin-1': {'admin'},
    'admin-2': {'admin'},
    'root-1': {'super_admin'},
    'root-2': {'super_admin'},
}


class TestSettings(Settings):
    DEPLOYMENT_ENVIRONMENT: str = 'development'
    LOG_LEVEL: str = 'DEBUG'
    SECRET_KEY: SecretStr = SecretStr(SECRET_KEY)
    SMS_EMAIL_GATEWAY_DOMAIN: str = 'sms.example.com'


class FrozenClock:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeNotifier:
    def __init__(self) -> None:
        self.emails: list[tuple[str, str]] = []
        self.sms: list[tuple[str, str]] = []
        self.completed: list[tuple[str, str]] = []
        self.fail = False

    async def send_email(self, address, token, *, expires_at):
        if self.fail:
            return False
        self.emails.append((address, token))
        return True

    async def send_sms(self, address, code, *, expires_at):
        if self.fail:
            return False
        self.sms.append((address, code))
        return True

    async def send_recovery_completed(self, address, *, method, completed_at):
        self.completed.append((address, method))
        return True

    @property
    def last_secret(self) -> str:
        sent = self.emails + self.sms
        return sent[-1][1]


class FailingAuditRepository(InMemoryAuditEventRepository):
    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    async def append(self, event):
        if self.failing:
            raise ConnectionError('audit store offline')
        return await super().append(event)


@dataclass
class Services:
    clock: FrozenClock
    policy: RecoveryPolicy
    notifier: FakeNotifier
    redis: FakeAsyncRedis
    requests: InMemoryRecoveryRequestRepository = field(default_factory=InMemoryRecoveryRequestRepository)
    overrides_repo: InMemoryAdminOverrideRepository = field(default_factory=InMemoryAdminOverrideRepository)
    grants: InMemoryTemporaryAccessRepository = field(default_factory=InMemoryTemporaryAccessRepository)
    roles: InMemoryRoleLookup = field(default_factory=lambda: InMemoryRoleLookup(STAFF_ROLES))
    audit_repo: FailingAuditRepository = field(default_factory=FailingAuditRepository)

    def __post_init__(self) -> None:
        self.audit = AuditLog(self.audit_repo, clock=self.clock)
        self.rate_limiter = RedisRecoveryRateLimiter(self.redis, self.policy.rate_limits, clock=self.clock)
        self.jwt = JWTService(SECRET_KEY, 'HS256')
        self.access = TemporaryAccessIssuer(
            self.grants,
            self.jwt,
            self.policy,
            audit=self.audit,
            roles=self.roles,
            clock=self.clock,
        )
        self.recovery = RecoveryRequestManager(
            RecoveryAdapters(requests=self.requests, overrides=self.overrides_repo, roles=self.roles),
            self.policy,
            rate_limiter=self.rate_limiter,
            verifier=CredentialVerifier(),
            audit=self.audit,
            notifier=self.notifier,
            access_issuer=self.access,
            clock=self.clock,
        )
        self.overrides = AdminOverrideManager(
            self.overrides_repo,
            self.roles,
            self.policy,
            audit=self.audit,
            rate_limiter=self.rate_limiter,
            clock=self.clock,
        )

    def events(self, event_type: str) -> list:
        return [event for event in self.audit_repo.events if event.event_type == event_type]


@pytest.fixture
def settings():
    return TestSettings(_env_file=None)


@pytest.fixture
def policy(settings):
    return build_policy(settings)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis()
    yield client
    await client.aclose()


@pytest.fixture
def services(clock, policy, notifier, redis_client):
    return Services(clock=clock, policy=policy, notifier=notifier, redis=redis_client)


@pytest.fixture
def make_services(clock, notifier, redis_client):
    def factory(policy):
        return Services(clock=clock, policy=policy, notifier=notifier, redis=redis_client)

    return factory


@pytest.fixture
def secret_key():
    return SECRET_KEY
