from datetime import datetime, timedelta, timezone

import pytest

from recovery_app.domain.recovery.entities import RecoveryRequest
from recovery_app.domain.recovery.verification import CredentialVerifier

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope='module')
def verifier():
    return CredentialVerifier()


def make_request(verifier, method, secret, **kwargs):
    return RecoveryRequest(
        user_id='user-1',
        method=method,
        secret_hash=verifier.hash_secret(secret),
        expires_at=NOW + timedelta(hours=1),
        max_attempts=3,
        **kwargs,
    )


def test_secret_shapes_follow_method_policy(verifier, policy):
    token = verifier.generate_secret(policy.methods['email'])
    code = verifier.generate_secret(policy.methods['sms'])

    assert len(token) == 64
    int(token, 16)
    assert len(code) == 6
    assert code.isdigit()


def test_secret_is_never_stored_in_clear(verifier):
    request = make_request(verifier, 'email', 'abc123secret')
    assert 'abc123secret' not in request.secret_hash


def test_email_and_sms_compare_hash(verifier):
    request = make_request(verifier, 'sms', '123456')

    assert verifier.verify(request, '123456').verified is True
    outcome = verifier.verify(request, '654321')
    assert outcome.verified is False
    assert outcome.reason == 'credential_mismatch'


def test_identity_verification_requires_completed_review(verifier):
    pending = make_request(verifier, 'identity_verification', 'tok-identity')
    outcome = verifier.verify(pending, 'tok-identity')
    assert outcome.verified is False
    assert outcome.reason == 'identity_review_not_verified'

    reviewed = make_request(verifier, 'identity_verification', 'tok-identity', identity_review_status='verified')
    assert verifier.verify(reviewed, 'tok-identity').verified is True
    assert verifier.verify(reviewed, 'wrong-token').verified is False


def test_admin_assisted_requires_emergency_override(verifier):
    request = make_request(verifier, 'admin_assisted', 'tok-admin')

    assert verifier.verify(request, 'tok-admin').reason == 'emergency_override_missing'
    assert verifier.verify(request, 'tok-admin', emergency_override_active=True).verified is True


def test_blank_credential_never_matches(verifier):
    request = make_request(verifier, 'email', 'tok-email')
    assert verifier.verify(request, '   ').verified is False
