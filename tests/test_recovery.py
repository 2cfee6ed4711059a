import asyncio
from dataclasses import replace
from datetime import timedelta
from http import HTTPStatus
from types import MappingProxyType

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from recovery_app.application.overrides.dto import OverrideCreateInput, OverrideRevokeInput
from recovery_app.application.recovery.dto import (
    IdentityReviewInput,
    RecoveryInitiateInput,
    RecoveryRejectInput,
    RecoveryVerifyInput,
)
from recovery_app.domain.audit.entities import RequestContext
from recovery_app.infrastructure.repositories.memory import InMemoryRecoveryRequestRepository

CONTEXT = RequestContext(ip_address='203.0.113.7', user_agent='pytest')


def initiate_input(method='email', user_id='u1', **kwargs):
    contact = '+5511999990000' if method == 'sms' else 'u1@example.com'
    return RecoveryInitiateInput(user_id=user_id, method=method, contact_info=contact, **kwargs)


def verify_input(credential):
    return RecoveryVerifyInput(credential=credential)


async def expect_error(awaitable, status, code):
    with pytest.raises(HTTPException) as exc_info:
        await awaitable
    assert exc_info.value.status_code == status
    assert exc_info.value.detail['code'] == code
    return exc_info.value.detail


async def test_sms_recovery_scenario(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('sms'), CONTEXT)

    code = services.notifier.sms[-1][1]
    assert services.notifier.sms[-1][0] == '+5511999990000'
    assert len(code) == 6 and code.isdigit()
    assert result.expires_at == services.clock() + timedelta(minutes=15)
    stored = await services.requests.get_by_id(result.request_id)
    assert stored.max_attempts == 5
    assert stored.secret_hash != code

    wrong = '000000' if code != '000000' else '111111'
    detail = await expect_error(
        recovery.verify(result.request_id, verify_input(wrong), CONTEXT),
        HTTPStatus.UNAUTHORIZED,
        'INVALID_CREDENTIAL',
    )
    assert detail['attempts_remaining'] == 4

    granted = await recovery.verify(result.request_id, verify_input(code), CONTEXT)
    assert granted.access_granted is True
    assert granted.temporary_token
    assert granted.expires_at == services.clock() + timedelta(hours=1)

    await expect_error(
        recovery.verify(result.request_id, verify_input(code), CONTEXT),
        HTTPStatus.NOT_FOUND,
        'INVALID_OR_EXPIRED',
    )


async def test_locked_after_max_failed_attempts_even_with_correct_credential(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('email'))
    token = services.notifier.last_secret

    for expected_remaining in (2, 1, 0):
        detail = await expect_error(
            recovery.verify(result.request_id, verify_input('not-the-token')),
            HTTPStatus.UNAUTHORIZED,
            'INVALID_CREDENTIAL',
        )
        assert detail['attempts_remaining'] == expected_remaining

    await expect_error(recovery.verify(result.request_id, verify_input(token)), HTTPStatus.LOCKED, 'LOCKED')
    failures = services.events('mfa_recovery_verification_failed')
    assert [event.data['error'] for event in failures] == ['INVALID_CREDENTIAL'] * 3 + ['LOCKED']


async def test_expired_request_fails_and_is_persisted_as_expired(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('email'))
    token = services.notifier.last_secret

    services.clock.advance(hours=24, seconds=1)
    await expect_error(recovery.verify(result.request_id, verify_input(token)), HTTPStatus.GONE, 'EXPIRED')

    stored = await services.requests.get_by_id(result.request_id)
    assert stored.status == 'expired'
    assert stored.pending_slot is None
    assert len(services.events('mfa_recovery_expired')) == 1

    await expect_error(
        recovery.verify(result.request_id, verify_input(token)),
        HTTPStatus.NOT_FOUND,
        'INVALID_OR_EXPIRED',
    )


class StaleReadRepository(InMemoryRecoveryRequestRepository):
    """Devolve a leitura e só então cede o loop, simulando duas leituras antes de qualquer escrita."""

    async def get_by_id(self, request_id):
        item = await super().get_by_id(request_id)
        await asyncio.sleep(0)
        return item


async def test_concurrent_correct_verifications_grant_exactly_once(services):
    services.requests = StaleReadRepository()
    services.__post_init__()
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('email'))
    token = services.notifier.last_secret

    outcomes = await asyncio.gather(
        recovery.verify(result.request_id, verify_input(token)),
        recovery.verify(result.request_id, verify_input(token)),
        return_exceptions=True,
    )

    granted = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    errors = [outcome for outcome in outcomes if isinstance(outcome, HTTPException)]
    assert len(granted) == 1 and granted[0].access_granted is True
    assert len(errors) == 1 and errors[0].detail['code'] == 'INVALID_OR_EXPIRED'
    assert len(await services.grants.list_active('u1', services.clock())) == 1


async def test_unsupported_and_disabled_methods(services, policy, make_services):
    await expect_error(
        services.recovery.initiate(initiate_input('carrier_pigeon')),
        HTTPStatus.BAD_REQUEST,
        'UNSUPPORTED_METHOD',
    )
    assert services.events('mfa_recovery_initiated')[-1].success is False

    methods = dict(policy.methods)
    methods['sms'] = replace(methods['sms'], enabled=False)
    disabled = make_services(replace(policy, methods=MappingProxyType(methods)))
    await expect_error(
        disabled.recovery.initiate(initiate_input('sms')),
        HTTPStatus.BAD_REQUEST,
        'UNSUPPORTED_METHOD',
    )


async def test_method_is_case_insensitive(services):
    result = await services.recovery.initiate(initiate_input('EMAIL'))
    assert result.method == 'email'


def test_malformed_input_rejected_before_any_state():
    with pytest.raises(ValidationError):
        RecoveryInitiateInput(user_id='u1', method='identity_verification', contact_info='u1@example.com')
    with pytest.raises(ValidationError):
        RecoveryInitiateInput(user_id='u1', method='admin_assisted', contact_info='u1@example.com')
    with pytest.raises(ValidationError):
        RecoveryInitiateInput(user_id='', method='email', contact_info='u1@example.com')
    with pytest.raises(ValidationError):
        RecoveryInitiateInput(user_id='u1', method='email')


async def test_rejected_attempts_count_towards_rate_limit(services):
    services.notifier.fail = True
    for _ in range(5):
        await expect_error(
            services.recovery.initiate(initiate_input('email')),
            HTTPStatus.BAD_GATEWAY,
            'DISPATCH_FAILED',
        )

    services.notifier.fail = False
    detail = await expect_error(
        services.recovery.initiate(initiate_input('email')),
        HTTPStatus.TOO_MANY_REQUESTS,
        'RATE_LIMITED',
    )
    assert detail['retry_in_seconds'] == 3600
    assert detail['cooldown_until'] == (services.clock() + timedelta(hours=1)).isoformat()


async def test_concurrency_cap_and_lazy_expiry_frees_slots(services):
    recovery = services.recovery
    for _ in range(3):
        await recovery.initiate(initiate_input('email'))

    await expect_error(
        recovery.initiate(initiate_input('email')),
        HTTPStatus.CONFLICT,
        'TOO_MANY_CONCURRENT_REQUESTS',
    )
    # outro usuário não é afetado
    await recovery.initiate(initiate_input('email', user_id='u2'))

    services.clock.advance(hours=24, seconds=1)
    await recovery.initiate(initiate_input('email'))
    assert len(services.events('mfa_recovery_expired')) == 3


async def test_concurrent_initiations_respect_cap(services):
    recovery = services.recovery
    outcomes = await asyncio.gather(
        *(recovery.initiate(initiate_input('email')) for _ in range(5)),
        return_exceptions=True,
    )

    created = [outcome for outcome in outcomes if not isinstance(outcome, Exception)]
    assert len(created) == 3
    pending = [item for item in await services.requests.list_by_user('u1') if item.status == 'pending']
    assert sorted(item.pending_slot for item in pending) == [1, 2, 3]


async def test_dispatch_failure_rolls_back_request(services):
    services.notifier.fail = True
    await expect_error(
        services.recovery.initiate(initiate_input('email')),
        HTTPStatus.BAD_GATEWAY,
        'DISPATCH_FAILED',
    )

    assert await services.requests.list_by_user('u1') == []
    assert len(services.events('mfa_recovery_dispatch_failed')) == 1


async def test_audit_failure_on_initiate_rolls_back_request(services):
    services.audit_repo.failing = True
    await expect_error(
        services.recovery.initiate(initiate_input('email')),
        HTTPStatus.SERVICE_UNAVAILABLE,
        'AUDIT_UNAVAILABLE',
    )

    assert await services.requests.list_by_user('u1') == []
    assert services.notifier.emails == []


async def test_audit_failure_on_completion_discards_grant(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('email'))
    token = services.notifier.last_secret

    services.audit_repo.failing = True
    await expect_error(
        recovery.verify(result.request_id, verify_input(token)),
        HTTPStatus.SERVICE_UNAVAILABLE,
        'AUDIT_UNAVAILABLE',
    )
    assert await services.grants.list_active('u1', services.clock()) == []


async def test_identity_verification_requires_review(services):
    recovery = services.recovery
    result = await recovery.initiate(
        initiate_input('identity_verification', identity_documents=['passport.pdf', ' ']),
    )
    token = services.notifier.last_secret
    stored = await services.requests.get_by_id(result.request_id)
    assert stored.identity_documents == ['passport.pdf']
    assert result.expires_at == services.clock() + timedelta(days=7)

    detail = await expect_error(
        recovery.verify(result.request_id, verify_input(token)),
        HTTPStatus.UNAUTHORIZED,
        'INVALID_CREDENTIAL',
    )
    assert detail['attempts_remaining'] == 2
    assert 'reason' not in detail
    failure = services.events('mfa_recovery_verification_failed')[-1]
    assert failure.data['reason'] == 'identity_review_not_verified'

    await expect_error(
        recovery.record_identity_review('support-1', result.request_id, IdentityReviewInput(decision='verified')),
        HTTPStatus.FORBIDDEN,
        'UNAUTHORIZED',
    )
    status = await recovery.record_identity_review(
        'admin-1', result.request_id, IdentityReviewInput(decision='verified', notes='documentos conferidos')
    )
    assert status.identity_review_status == 'verified'

    granted = await recovery.verify(result.request_id, verify_input(token))
    assert granted.access_granted is True


async def test_identity_review_rejection_closes_request(services):
    result = await services.recovery.initiate(
        initiate_input('identity_verification', identity_documents=['passport.pdf']),
    )

    status = await services.recovery.record_identity_review(
        'root-1', result.request_id, IdentityReviewInput(decision='rejected', notes='documento ilegível')
    )
    assert status.status == 'rejected'
    assert status.identity_review_status == 'rejected'


async def test_identity_review_only_for_identity_method(services):
    result = await services.recovery.initiate(initiate_input('email'))
    await expect_error(
        services.recovery.record_identity_review('admin-1', result.request_id, IdentityReviewInput(decision='verified')),
        HTTPStatus.BAD_REQUEST,
        'UNSUPPORTED_METHOD',
    )


async def test_admin_assisted_requires_approved_emergency_override(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('admin_assisted', emergency_details='perdi o celular em viagem'))
    token = services.notifier.last_secret

    await expect_error(
        recovery.verify(result.request_id, verify_input(token)),
        HTTPStatus.UNAUTHORIZED,
        'INVALID_CREDENTIAL',
    )

    created = await services.overrides.create(
        'root-1',
        OverrideCreateInput(
            target_user_id='u1',
            override_type='emergency_access',
            duration_hours=2,
            reason='usuário validado por telefone',
        ),
    )
    await services.overrides.approve('root-2', created.override_id)

    granted = await recovery.verify(result.request_id, verify_input(token))
    assert granted.access_granted is True
    override = await services.overrides_repo.get_by_id(created.override_id)
    assert override.times_used == 1
    assert services.events('mfa_recovery_completed')[-1].data['override_id'] == created.override_id


async def approved_emergency_override(services, duration_hours=2):
    created = await services.overrides.create(
        'root-1',
        OverrideCreateInput(
            target_user_id='u1',
            override_type='emergency_access',
            duration_hours=duration_hours,
            reason='usuário validado por telefone',
        ),
    )
    await services.overrides.approve('root-2', created.override_id)
    return created.override_id


async def test_admin_assisted_fails_after_override_revoked(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('admin_assisted', emergency_details='perdi o celular em viagem'))
    token = services.notifier.last_secret
    override_id = await approved_emergency_override(services)

    await services.overrides.revoke('root-1', override_id, OverrideRevokeInput(reason='contato não confirmado'))

    detail = await expect_error(
        recovery.verify(result.request_id, verify_input(token)),
        HTTPStatus.UNAUTHORIZED,
        'INVALID_CREDENTIAL',
    )
    assert detail['attempts_remaining'] == 2
    assert services.events('mfa_recovery_verification_failed')[-1].data['reason'] == 'emergency_override_missing'
    assert (await services.overrides_repo.get_by_id(override_id)).times_used == 0
    assert services.events('mfa_recovery_completed') == []


async def test_admin_assisted_fails_after_override_lapses_without_sweep(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('admin_assisted', emergency_details='perdi o celular em viagem'))
    token = services.notifier.last_secret
    override_id = await approved_emergency_override(services, duration_hours=2)

    services.clock.advance(hours=3)

    detail = await expect_error(
        recovery.verify(result.request_id, verify_input(token)),
        HTTPStatus.UNAUTHORIZED,
        'INVALID_CREDENTIAL',
    )
    assert detail['attempts_remaining'] == 2
    assert services.events('mfa_recovery_verification_failed')[-1].data['reason'] == 'emergency_override_missing'
    # nenhuma varredura rodou: o registro continua ativo, só vencido
    override = await services.overrides_repo.get_by_id(override_id)
    assert override.is_active is True
    assert override.is_effective(services.clock()) is False
    assert override.times_used == 0


async def test_status_reports_effective_expiry_without_mutation(services):
    result = await services.recovery.initiate(initiate_input('sms'))

    services.clock.advance(minutes=16)
    status = await services.recovery.get_status(result.request_id)
    assert status.status == 'expired'
    assert status.attempts_remaining == 5
    assert (await services.requests.get_by_id(result.request_id)).status == 'pending'

    await expect_error(services.recovery.get_status('missing'), HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED')


async def test_manual_rejection(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('email'))
    token = services.notifier.last_secret

    await expect_error(
        recovery.reject('support-1', result.request_id, RecoveryRejectInput(reason='suspeita de fraude')),
        HTTPStatus.FORBIDDEN,
        'UNAUTHORIZED',
    )
    status = await recovery.reject('admin-1', result.request_id, RecoveryRejectInput(reason='suspeita de fraude'))
    assert status.status == 'rejected'

    await expect_error(recovery.verify(result.request_id, verify_input(token)), HTTPStatus.NOT_FOUND, 'INVALID_OR_EXPIRED')
    await expect_error(
        recovery.reject('admin-1', result.request_id, RecoveryRejectInput(reason='de novo')),
        HTTPStatus.NOT_FOUND,
        'INVALID_OR_EXPIRED',
    )


async def test_sweep_expires_then_purges(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('sms'))

    services.clock.advance(minutes=16)
    assert await recovery.expire_stale_requests() == 1
    assert await recovery.expire_stale_requests() == 0
    assert await recovery.purge_expired_requests() == 0

    services.clock.advance(days=1)
    assert await recovery.purge_expired_requests() == 1
    assert await services.requests.get_by_id(result.request_id) is None


async def test_success_notification_is_sent_in_background(services):
    recovery = services.recovery
    result = await recovery.initiate(initiate_input('email'))

    await recovery.verify(result.request_id, verify_input(services.notifier.last_secret))
    await recovery.wait_for_notifications()

    assert services.notifier.completed == [('u1@example.com', 'email')]


async def test_audit_events_carry_request_context(services):
    await services.recovery.initiate(initiate_input('email'), CONTEXT)

    event = services.events('mfa_recovery_initiated')[0]
    assert event.success is True
    assert event.ip_address == '203.0.113.7'
    assert event.user_agent == 'pytest'
    assert event.target_user_id == 'u1'
