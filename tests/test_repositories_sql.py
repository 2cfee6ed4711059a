from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from recovery_app.domain.audit.entities import AuditEvent
from recovery_app.domain.overrides.entities import AdminOverride
from recovery_app.domain.recovery.entities import RecoveryRequest, TemporaryAccessGrant
from recovery_app.infrastructure.db.utils import create_schema
from recovery_app.infrastructure.repositories.audit_repository import AuditEventRepositoryImpl
from recovery_app.infrastructure.repositories.override_repository import (
    AdminOverrideRepositoryImpl,
    RoleLookupImpl,
)
from recovery_app.infrastructure.repositories.recovery_repository import (
    RecoveryRequestRepositoryImpl,
    TemporaryAccessRepositoryImpl,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def session(tmp_path):
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path / "recovery.db"}')
    await create_schema(engine)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()


def make_request(user_id='u1', method='email', minutes=60, max_attempts=3):
    return RecoveryRequest(
        user_id=user_id,
        method=method,
        secret_hash='$argon2id$hash',
        expires_at=NOW + timedelta(minutes=minutes),
        max_attempts=max_attempts,
        contact_info='u1@example.com',
        identity_documents=['passport.pdf'] if method == 'identity_verification' else [],
        created_at=NOW,
    )


def make_override(override_type='emergency_access', requires_approval=True, hours=2):
    return AdminOverride(
        target_user_id='u1',
        override_type=override_type,
        requested_by='root-1',
        reason='validado por telefone',
        expires_at=NOW + timedelta(hours=hours),
        requires_approval=requires_approval,
        is_active=not requires_approval,
        created_at=NOW,
    )


async def test_pending_slots_cap_concurrent_requests(session):
    repo = RecoveryRequestRepositoryImpl(session)

    slots = [(await repo.add(make_request(), max_pending=3)).pending_slot for _ in range(3)]
    assert slots == [1, 2, 3]
    assert await repo.add(make_request(), max_pending=3) is None
    assert (await repo.add(make_request(user_id='u2'), max_pending=3)).pending_slot == 1


class StaleSlotRepository(RecoveryRequestRepositoryImpl):
    """Primeira leitura de slots desatualizada, como se outra transação tivesse inserido no meio."""

    def __init__(self, session):
        super().__init__(session)
        self.reads = 0

    async def _occupied_slots(self, user_id):
        self.reads += 1
        if self.reads == 1:
            return set()
        return await super()._occupied_slots(user_id)


async def test_slot_conflict_is_retried_on_next_free_slot(session):
    await RecoveryRequestRepositoryImpl(session).add(make_request(), max_pending=3)

    repo = StaleSlotRepository(session)
    stored = await repo.add(make_request(), max_pending=3)

    assert stored.pending_slot == 2
    assert repo.reads == 2


async def test_register_attempt_is_conditional(session):
    repo = RecoveryRequestRepositoryImpl(session)
    stored = await repo.add(make_request(max_attempts=2), max_pending=3)

    failed = await repo.register_attempt(stored.id, succeeded=False, now=NOW)
    assert failed.attempts == 1
    assert failed.status == 'pending'

    completed = await repo.register_attempt(stored.id, succeeded=True, now=NOW)
    assert completed.status == 'completed'
    assert completed.pending_slot is None
    assert completed.completed_at == NOW

    assert await repo.register_attempt(stored.id, succeeded=True, now=NOW) is None


async def test_register_attempt_stops_at_max_attempts(session):
    repo = RecoveryRequestRepositoryImpl(session)
    stored = await repo.add(make_request(max_attempts=1), max_pending=3)

    await repo.register_attempt(stored.id, succeeded=False, now=NOW)
    assert await repo.register_attempt(stored.id, succeeded=True, now=NOW) is None
    assert (await repo.get_by_id(stored.id)).attempts == 1


async def test_transition_and_identity_review_only_from_pending(session):
    repo = RecoveryRequestRepositoryImpl(session)
    identity = await repo.add(make_request(method='identity_verification'), max_pending=3)
    email = await repo.add(make_request(), max_pending=3)

    assert await repo.set_identity_review(email.id, review_status='verified', reviewer_id='admin-1') is None
    reviewed = await repo.set_identity_review(identity.id, review_status='verified', reviewer_id='admin-1', notes='ok')
    assert reviewed.identity_review_status == 'verified'
    assert reviewed.identity_documents == ['passport.pdf']

    rejected = await repo.transition(identity.id, to_status='rejected', now=NOW, rejection_reason='fraude')
    assert rejected.status == 'rejected'
    assert rejected.pending_slot is None
    assert await repo.transition(identity.id, to_status='expired', now=NOW) is None


async def test_expire_pending_and_purge(session):
    repo = RecoveryRequestRepositoryImpl(session)
    short = await repo.add(make_request(minutes=15), max_pending=3)
    await repo.add(make_request(minutes=60 * 24), max_pending=3)
    other_user = await repo.add(make_request(user_id='u2', minutes=15), max_pending=3)

    later = NOW + timedelta(minutes=16)
    expired = await repo.expire_pending(later, user_id='u1')
    assert [item.id for item in expired] == [short.id]
    assert (await repo.get_by_id(other_user.id)).status == 'pending'

    assert len(await repo.expire_pending(later)) == 1
    assert await repo.purge_terminal(NOW) == 0
    assert await repo.purge_terminal(later) == 2
    assert [item.user_id for item in await repo.list_by_user('u1')] == ['u1']


async def test_remove(session):
    repo = RecoveryRequestRepositoryImpl(session)
    stored = await repo.add(make_request(), max_pending=3)

    assert await repo.remove(stored.id) is True
    assert await repo.remove(stored.id) is False
    assert await repo.get_by_id(stored.id) is None


async def test_temporary_access_revoke_once(session):
    repo = TemporaryAccessRepositoryImpl(session)
    grant = await repo.add(TemporaryAccessGrant(user_id='u1', expires_at=NOW + timedelta(hours=1), created_at=NOW))

    assert [item.id for item in await repo.list_active('u1', NOW)] == [grant.id]
    revoked = await repo.revoke(grant.id, revoked_by='admin-1', reason='suspeita', now=NOW)
    assert revoked.revoked_at == NOW
    assert await repo.revoke(grant.id, revoked_by='admin-2', reason='de novo', now=NOW) is None
    assert await repo.list_active('u1', NOW) == []


async def test_override_approval_is_first_writer_wins(session):
    repo = AdminOverrideRepositoryImpl(session)
    override = await repo.add(make_override())

    assert await repo.find_effective('u1', 'emergency_access', NOW) is None
    approved = await repo.approve(override.id, approver_id='root-2', notes=None, now=NOW)
    assert approved.is_active is True
    assert await repo.approve(override.id, approver_id='root-3', notes=None, now=NOW) is None

    effective = await repo.find_effective('u1', 'emergency_access', NOW)
    assert effective.id == override.id
    used = await repo.register_use(override.id, NOW)
    assert used.times_used == 1
    assert used.last_used_at == NOW


async def test_override_cannot_be_approved_after_expiry_or_revocation(session):
    repo = AdminOverrideRepositoryImpl(session)
    lapsed = await repo.add(make_override(hours=1))
    revoked = await repo.add(make_override())

    assert await repo.approve(lapsed.id, approver_id='root-2', notes=None, now=NOW + timedelta(hours=1)) is None

    assert (await repo.revoke(revoked.id, revoked_by='admin-1', reason='engano', now=NOW)).is_active is False
    assert await repo.revoke(revoked.id, revoked_by='admin-1', reason='engano', now=NOW) is None
    assert await repo.approve(revoked.id, approver_id='root-2', notes=None, now=NOW) is None


async def test_deactivate_expired_overrides(session):
    repo = AdminOverrideRepositoryImpl(session)
    active = await repo.add(make_override('temporary_disable', requires_approval=False, hours=1))

    later = NOW + timedelta(hours=1)
    assert await repo.find_effective('u1', 'temporary_disable', later) is None
    lapsed = await repo.deactivate_expired(later)
    assert [item.id for item in lapsed] == [active.id]
    assert await repo.deactivate_expired(later) == []
    assert await repo.register_use(active.id, later) is None


async def test_role_lookup_grant_is_idempotent(session):
    roles = RoleLookupImpl(session)

    assert await roles.roles_of('root-1') == set()
    assert await roles.grant('root-1', 'super_admin', granted_by='bootstrap') is True
    assert await roles.grant('root-1', 'super_admin') is False
    assert await roles.roles_of('root-1') == {'super_admin'}


async def test_audit_events_are_listed_newest_first(session):
    repo = AuditEventRepositoryImpl(session)
    for offset, event_type in enumerate(['first', 'second']):
        await repo.append(
            AuditEvent(
                event_type=event_type,
                category='mfa_recovery',
                success=True,
                created_at=NOW + timedelta(seconds=offset),
                target_user_id='u1',
                data={'expires_at': NOW, 'attempts': offset},
            )
        )

    events = await repo.list(target_user_id='u1')
    assert [event.event_type for event in events] == ['second', 'first']
    assert events[0].data == {'expires_at': NOW.isoformat(), 'attempts': 1}
    assert await repo.list(category='admin_override') == []
