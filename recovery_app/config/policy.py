# caminho: recovery_app/config/policy.py
# Funções:
# - RecoveryPolicy: configuração imutável repassada explicitamente aos componentes
# - build_policy(): converte Settings em RecoveryPolicy

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from types import MappingProxyType
from typing import Mapping

from recovery_app.config.settings import Settings
from recovery_app.domain.overrides.enums import STAFF_ROLE_MANAGER
from recovery_app.domain.recovery.enums import SecretKind, secret_kind_for

HOUR = 3_600
DAY = 86_400
WEEK = 7 * DAY
MONTH = 30 * DAY

OVERRIDE_RATE_LIMIT_ACTION = 'admin_override'


@dataclass(frozen=True, slots=True)
class RateWindow:
    name: str
    seconds: int
    max_attempts: int


@dataclass(frozen=True, slots=True)
class RateLimitPolicy:
    windows: tuple[RateWindow, ...]

    @property
    def retention_seconds(self) -> int:
        return max(window.seconds for window in self.windows)


@dataclass(frozen=True, slots=True)
class MethodPolicy:
    enabled: bool
    secret_kind: SecretKind
    secret_length: int
    validity: timedelta
    max_attempts: int


@dataclass(frozen=True, slots=True)
class OverrideTypePolicy:
    max_duration: timedelta
    requires_justification: bool
    requires_approval: bool
    create_role: str
    approve_role: str


@dataclass(frozen=True, slots=True)
class RecoveryPolicy:
    methods: Mapping[str, MethodPolicy]
    overrides: Mapping[str, OverrideTypePolicy]
    rate_limits: Mapping[str, RateLimitPolicy]
    max_concurrent_requests: int
    temporary_access_ttl: timedelta
    purge_after: timedelta
    notify_on_success: bool
    manage_role: str = STAFF_ROLE_MANAGER
    review_role: str = STAFF_ROLE_MANAGER


def _method(method: str, *, enabled: bool, length: int, seconds: int, attempts: int) -> MethodPolicy:
    return MethodPolicy(
        enabled=enabled,
        secret_kind=secret_kind_for(method),
        secret_length=max(1, length),
        validity=timedelta(seconds=max(1, seconds)),
        max_attempts=max(1, attempts),
    )


def build_policy(settings: Settings) -> RecoveryPolicy:
    methods = {
        'email': _method(
            'email',
            enabled=settings.RECOVERY_EMAIL_ENABLED,
            length=settings.RECOVERY_EMAIL_TOKEN_BYTES,
            seconds=settings.RECOVERY_EMAIL_VALIDITY_SECONDS,
            attempts=settings.RECOVERY_EMAIL_MAX_ATTEMPTS,
        ),
        'sms': _method(
            'sms',
            enabled=settings.RECOVERY_SMS_ENABLED,
            length=settings.RECOVERY_SMS_CODE_LENGTH,
            seconds=settings.RECOVERY_SMS_VALIDITY_SECONDS,
            attempts=settings.RECOVERY_SMS_MAX_ATTEMPTS,
        ),
        'identity_verification': _method(
            'identity_verification',
            enabled=settings.RECOVERY_IDENTITY_ENABLED,
            length=settings.RECOVERY_IDENTITY_TOKEN_BYTES,
            seconds=settings.RECOVERY_IDENTITY_VALIDITY_SECONDS,
            attempts=settings.RECOVERY_IDENTITY_MAX_ATTEMPTS,
        ),
        'admin_assisted': _method(
            'admin_assisted',
            enabled=settings.RECOVERY_ADMIN_ASSISTED_ENABLED,
            length=settings.RECOVERY_ADMIN_ASSISTED_TOKEN_BYTES,
            seconds=settings.RECOVERY_ADMIN_ASSISTED_VALIDITY_SECONDS,
            attempts=settings.RECOVERY_ADMIN_ASSISTED_MAX_ATTEMPTS,
        ),
    }

    recovery_windows = (
        RateWindow('hour', HOUR, settings.RECOVERY_RATE_LIMIT_PER_HOUR),
        RateWindow('day', DAY, settings.RECOVERY_RATE_LIMIT_PER_DAY),
    )
    rate_limits = {
        'email': RateLimitPolicy(recovery_windows),
        'sms': RateLimitPolicy(recovery_windows),
        'admin_assisted': RateLimitPolicy(recovery_windows),
        'identity_verification': RateLimitPolicy(
            recovery_windows
            + (
                RateWindow('week', WEEK, settings.IDENTITY_RATE_LIMIT_PER_WEEK),
                RateWindow('month', MONTH, settings.IDENTITY_RATE_LIMIT_PER_MONTH),
            )
        ),
        OVERRIDE_RATE_LIMIT_ACTION: RateLimitPolicy(
            (
                RateWindow('hour', HOUR, settings.OVERRIDE_RATE_LIMIT_PER_HOUR),
                RateWindow('day', DAY, settings.OVERRIDE_RATE_LIMIT_PER_DAY),
            )
        ),
    }

    overrides = {
        'temporary_disable': OverrideTypePolicy(
            max_duration=timedelta(hours=settings.OVERRIDE_TEMPORARY_DISABLE_MAX_HOURS),
            requires_justification=True,
            requires_approval=False,
            create_role='admin',
            approve_role='admin',
        ),
        'reset_mfa': OverrideTypePolicy(
            max_duration=timedelta(hours=settings.OVERRIDE_RESET_MFA_MAX_HOURS),
            requires_justification=True,
            requires_approval=True,
            create_role='super_admin',
            approve_role='super_admin',
        ),
        'emergency_access': OverrideTypePolicy(
            max_duration=timedelta(hours=settings.OVERRIDE_EMERGENCY_ACCESS_MAX_HOURS),
            requires_justification=True,
            requires_approval=True,
            create_role='super_admin',
            approve_role='super_admin',
        ),
        'trust_device': OverrideTypePolicy(
            max_duration=timedelta(hours=settings.OVERRIDE_TRUST_DEVICE_MAX_HOURS),
            requires_justification=False,
            requires_approval=False,
            create_role='admin',
            approve_role='admin',
        ),
    }

    return RecoveryPolicy(
        methods=MappingProxyType(methods),
        overrides=MappingProxyType(overrides),
        rate_limits=MappingProxyType(rate_limits),
        max_concurrent_requests=max(1, settings.RECOVERY_MAX_CONCURRENT_REQUESTS),
        temporary_access_ttl=timedelta(seconds=max(1, settings.TEMPORARY_ACCESS_EXPIRE_SECONDS)),
        purge_after=timedelta(seconds=max(0, settings.RECOVERY_PURGE_AFTER_SECONDS)),
        notify_on_success=settings.RECOVERY_NOTIFY_USER_ON_SUCCESS,
    )
