# caminho: recovery_app/shared/email_notifications.py
# Funções:
# - SmtpRecoveryNotifier: envia desafios de recuperação (e-mail e SMS via gateway) e avisos de conclusão
# - NullRecoveryNotifier: implementação no-op (desenvolvimento local)

from __future__ import annotations

import asyncio
import re
import smtplib
import ssl
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from pathlib import Path
from typing import Sequence
from urllib.parse import urlencode

from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

from recovery_app.config.settings import Settings
from recovery_app.shared.logging import log_error, log_info, log_warning


def _clean_addresses(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [addr.strip() for addr in raw.split(',') if addr.strip()]


def _resolve_template_dir(settings: Settings) -> Path:
    template_dir = Path(settings.EMAIL_SERVER_TEMPLATE_DIR or '')
    if not template_dir.is_absolute():
        package_root = Path(__file__).resolve().parents[1]
        template_dir = package_root / template_dir
    return template_dir


def _mask(address: str) -> str:
    name, _, domain = address.partition('@')
    if not domain:
        return f'***{address[-2:]}'
    return f'{name[:1]}***@{domain}'


class SmtpRecoveryNotifier:
    """Entrega os desafios de recuperação.

    Todos os métodos devolvem ``True``/``False`` em vez de propagar erros de
    transporte: quem decide o rollback é o gerenciador de recuperação.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        template_dir = _resolve_template_dir(settings)
        self._template_dir = template_dir
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(['html', 'xml']),
        )

    async def send_email(self, address: str, token: str, *, expires_at: datetime) -> bool:
        if not self._smtp_ready('RECOVERY_EMAIL'):
            return False

        link = self._build_link(token)
        try:
            html_body = await asyncio.to_thread(
                self._render,
                self._settings.RECOVERY_TEMPLATE_NAME,
                token=token,
                recovery_link=link,
                expires_at=expires_at.isoformat(),
                product_name=self._settings.PROJECT_NAME,
            )
        except RuntimeError:
            return False

        plain_body = (
            'Recebemos um pedido de recuperação de acesso à sua conta.\n\n'
            f'Token: {token}\n'
            f'Link direto: {link or "(não configurado)"}\n'
            f'Válido até: {expires_at.isoformat()}\n\n'
            'Se você não fez esta solicitação, ignore esta mensagem e procure o suporte.'
        )
        message = self._compose_message(
            subject=self._settings.RECOVERY_EMAIL_SUBJECT,
            recipients=[address],
            html_body=html_body,
            plain_body=plain_body,
        )
        return await self._send(message, [address], event='RECOVERY_EMAIL')

    async def send_sms(self, address: str, code: str, *, expires_at: datetime) -> bool:
        gateway_address = self._sms_gateway_address(address)
        if gateway_address is None:
            log_warning('RECOVERY_SMS_SKIPPED_NO_GATEWAY', {'to': _mask(address)})
            return False
        if not self._smtp_ready('RECOVERY_SMS'):
            return False

        minutes = max(1, int((expires_at - datetime.now(expires_at.tzinfo)).total_seconds() // 60))
        message = self._compose_message(
            subject=self._settings.PROJECT_NAME,
            recipients=[gateway_address],
            plain_body=f'{self._settings.PROJECT_NAME}: seu código de recuperação é {code}. Expira em {minutes} min.',
        )
        return await self._send(message, [gateway_address], event='RECOVERY_SMS')

    async def send_recovery_completed(self, address: str, *, method: str, completed_at: datetime) -> bool:
        recipient = self._sms_gateway_address(address) if method == 'sms' else address
        if recipient is None:
            log_info('RECOVERY_COMPLETED_NOTICE_SKIPPED', {'method': method})
            return False
        if not self._smtp_ready('RECOVERY_COMPLETED'):
            return False

        plain_body = (
            f'O acesso à sua conta foi recuperado em {completed_at.isoformat()} (método: {method}).\n'
            'Se não foi você, entre em contato com o suporte imediatamente.'
        )
        html_body = None
        if method != 'sms':
            try:
                html_body = await asyncio.to_thread(
                    self._render,
                    self._settings.RECOVERY_COMPLETED_TEMPLATE_NAME,
                    method=method,
                    completed_at=completed_at.isoformat(),
                    product_name=self._settings.PROJECT_NAME,
                )
            except RuntimeError:
                return False

        message = self._compose_message(
            subject=self._settings.RECOVERY_COMPLETED_SUBJECT,
            recipients=[recipient],
            html_body=html_body,
            plain_body=plain_body,
        )
        return await self._send(message, [recipient], event='RECOVERY_COMPLETED')

    def _smtp_ready(self, event: str) -> bool:
        smtp_host = self._settings.EMAIL_SERVER_SMTP_HOST
        smtp_username = self._settings.EMAIL_SERVER_USERNAME
        smtp_password = self._settings.EMAIL_SERVER_PASSWORD.get_secret_value()

        missing = [item for item, value in {
            'host': smtp_host,
            'username': smtp_username,
            'password': smtp_password,
        }.items() if not value]
        if missing:
            log_warning(f'{event}_SKIPPED_SMTP_MISCONFIGURED', {'missing': missing})
            return False
        return True

    async def _send(self, message: EmailMessage, recipients: Sequence[str], *, event: str) -> bool:
        try:
            await asyncio.to_thread(self._deliver, message, recipients)
        except (smtplib.SMTPException, OSError) as exc:
            log_error(f'{event}_DELIVERY_FAILED', {'to': [_mask(item) for item in recipients], 'error': repr(exc)})
            return False
        log_info(f'{event}_SENT', {'to': [_mask(item) for item in recipients]})
        return True

    def _render(self, template_name: str, **context) -> str:
        try:
            template = self._env.get_template(template_name)
        except TemplateNotFound as exc:  # pragma: no cover - configuração incorreta
            log_error('EMAIL_TEMPLATE_NOT_FOUND', {'template': template_name})
            raise RuntimeError(f'Email template {template_name} not found in {self._template_dir}') from exc
        return template.render(**context)

    def _sms_gateway_address(self, phone: str) -> str | None:
        domain = (self._settings.SMS_EMAIL_GATEWAY_DOMAIN or '').strip()
        if not domain:
            return None
        digits_only = re.sub(r'\D', '', phone)
        if not digits_only:
            return None
        return f'{digits_only}@{domain}'

    def _compose_message(
        self,
        *,
        subject: str,
        recipients: Sequence[str],
        plain_body: str,
        html_body: str | None = None,
    ) -> EmailMessage:
        message = EmailMessage()
        sender_address = (self._settings.EMAIL_FROM_ADDRESS or self._settings.EMAIL_SERVER_USERNAME or '').strip()
        sender_name = (self._settings.EMAIL_FROM_NAME or self._settings.EMAIL_SERVER_NAME or '').strip()

        message['Subject'] = subject
        message['From'] = formataddr((sender_name, sender_address)) if sender_address else sender_name or 'Recovery App'
        message['To'] = ', '.join(recipients)
        message['Message-ID'] = make_msgid()
        message.set_content(plain_body)
        if html_body:
            message.add_alternative(html_body, subtype='html')

        return message

    def _deliver(self, message: EmailMessage, to_recipients: Sequence[str]) -> None:
        bcc_list = _clean_addresses(self._settings.EMAIL_BCC_ADDRESSES)
        all_recipients = list(dict.fromkeys([*to_recipients, *bcc_list]))

        encryption = (self._settings.EMAIL_SERVER_SMTP_ENCRYPTION or '').upper()
        password = self._settings.EMAIL_SERVER_PASSWORD.get_secret_value()
        context = ssl.create_default_context()

        if encryption == 'SSL/TLS':
            with smtplib.SMTP_SSL(self._settings.EMAIL_SERVER_SMTP_HOST, self._settings.EMAIL_SERVER_SMTP_PORT, context=context) as smtp:
                smtp.login(self._settings.EMAIL_SERVER_USERNAME, password)
                smtp.send_message(message, to_addrs=all_recipients)
                return

        with smtplib.SMTP(self._settings.EMAIL_SERVER_SMTP_HOST, self._settings.EMAIL_SERVER_SMTP_PORT) as smtp:
            smtp.ehlo()
            if encryption == 'STARTTLS':
                smtp.starttls(context=context)
                smtp.ehlo()
            smtp.login(self._settings.EMAIL_SERVER_USERNAME, password)
            smtp.send_message(message, to_addrs=all_recipients)

    def _build_link(self, token: str) -> str:
        base = self._settings.RECOVERY_LINK_BASE or ''
        if not base:
            return ''
        query = urlencode({'token': token})
        separator = '&' if '?' in base else '?'
        return f'{base}{separator}{query}'


class NullRecoveryNotifier:
    async def send_email(self, address: str, token: str, *, expires_at: datetime) -> bool:  # pragma: no cover - uso local
        log_info('RECOVERY_EMAIL_SUPPRESSED', {'to': _mask(address)})
        return True

    async def send_sms(self, address: str, code: str, *, expires_at: datetime) -> bool:  # pragma: no cover - uso local
        log_info('RECOVERY_SMS_SUPPRESSED', {'to': _mask(address)})
        return True

    async def send_recovery_completed(self, address: str, *, method: str, completed_at: datetime) -> bool:  # pragma: no cover
        return True
