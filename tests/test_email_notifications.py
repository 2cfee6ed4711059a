import smtplib
from datetime import datetime, timedelta, timezone

import pytest

from recovery_app.shared.email_notifications import SmtpRecoveryNotifier

EXPIRES_AT = datetime.now(timezone.utc) + timedelta(minutes=15)


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_deliver(self, message, recipients):
        sent.append((message, list(recipients)))

    monkeypatch.setattr(SmtpRecoveryNotifier, '_deliver', fake_deliver)
    return sent


async def test_email_renders_token_and_link(settings, outbox):
    settings = settings.model_copy(update={'RECOVERY_LINK_BASE': 'https://app.example.com/recover'})
    notifier = SmtpRecoveryNotifier(settings)

    assert await notifier.send_email('u1@example.com', 'a1b2c3', expires_at=EXPIRES_AT) is True

    message, recipients = outbox[0]
    assert recipients == ['u1@example.com']
    assert message['Subject'] == settings.RECOVERY_EMAIL_SUBJECT
    html = message.get_body(preferencelist=('html',)).get_content()
    assert 'a1b2c3' in html
    assert 'https://app.example.com/recover?token=a1b2c3' in html
    assert 'Token: a1b2c3' in message.get_body(preferencelist=('plain',)).get_content()


async def test_sms_goes_through_email_gateway(settings, outbox):
    notifier = SmtpRecoveryNotifier(settings)

    assert await notifier.send_sms('+55 (11) 99999-0000', '123456', expires_at=EXPIRES_AT) is True

    message, recipients = outbox[0]
    assert recipients == ['5511999990000@sms.example.com']
    assert '123456' in message.get_content()
    assert not message.is_multipart()


async def test_sms_without_gateway_is_not_sent(settings, outbox):
    notifier = SmtpRecoveryNotifier(settings.model_copy(update={'SMS_EMAIL_GATEWAY_DOMAIN': ''}))

    assert await notifier.send_sms('+5511999990000', '123456', expires_at=EXPIRES_AT) is False
    assert await notifier.send_recovery_completed('+5511999990000', method='sms', completed_at=EXPIRES_AT) is False
    assert outbox == []


async def test_delivery_failure_returns_false(settings, monkeypatch):
    def broken_deliver(self, message, recipients):
        raise smtplib.SMTPServerDisconnected('connection closed')

    monkeypatch.setattr(SmtpRecoveryNotifier, '_deliver', broken_deliver)
    notifier = SmtpRecoveryNotifier(settings)

    assert await notifier.send_email('u1@example.com', 'a1b2c3', expires_at=EXPIRES_AT) is False


async def test_completion_notice_mentions_method(settings, outbox):
    notifier = SmtpRecoveryNotifier(settings)
    completed_at = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    assert await notifier.send_recovery_completed('u1@example.com', method='email', completed_at=completed_at) is True

    message, _ = outbox[0]
    html = message.get_body(preferencelist=('html',)).get_content()
    assert '<strong>email</strong>' in html
    assert completed_at.isoformat() in html
