from http import HTTPStatus

import pytest
from fastapi import HTTPException

from recovery_app.domain.audit.entities import RequestContext


async def test_record_drops_empty_fields_and_stamps_clock(services):
    event = await services.audit.record(
        'mfa_recovery_initiated',
        category='mfa_recovery',
        success=True,
        target_user_id='u1',
        context=RequestContext(ip_address='198.51.100.4'),
        method='email',
        override_id=None,
    )

    assert event.created_at == services.clock()
    assert event.ip_address == '198.51.100.4'
    assert event.user_agent is None
    assert event.data == {'method': 'email'}


async def test_store_failure_becomes_audit_unavailable(services):
    services.audit_repo.failing = True

    with pytest.raises(HTTPException) as exc_info:
        await services.audit.record('mfa_recovery_initiated', category='mfa_recovery', success=True)

    assert exc_info.value.status_code == HTTPStatus.SERVICE_UNAVAILABLE
    assert exc_info.value.detail == {'code': 'AUDIT_UNAVAILABLE'}
    assert isinstance(exc_info.value.__cause__, ConnectionError)


async def test_list_events_filters_newest_first(services):
    for index, user_id in enumerate(['u1', 'u2', 'u1']):
        services.clock.advance(seconds=1)
        await services.audit.record(f'event_{index}', category='mfa_recovery', success=True, target_user_id=user_id)
    await services.audit.record('other', category='admin_override', success=True, target_user_id='u1')

    events = await services.audit.list_events(target_user_id='u1', category='mfa_recovery')
    assert [event.event_type for event in events] == ['event_2', 'event_0']

    page = await services.audit.list_events(offset=1, limit=2)
    assert [event.event_type for event in page] == ['event_2', 'event_1']
