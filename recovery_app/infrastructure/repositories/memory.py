# caminho: recovery_app/infrastructure/repositories/memory.py
# Funções:
# - InMemoryRecoveryRequestRepository / InMemoryTemporaryAccessRepository
# - InMemoryAdminOverrideRepository / InMemoryRoleLookup / InMemoryAuditEventRepository
#
# Mesma semântica de compare-and-set dos repositórios SQL: cada método
# condicional verifica e grava sem nenhum await no meio, então é atômico
# dentro do event loop. Devolvem cópias para que o chamador não altere o estado.

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from recovery_app.domain.audit.entities import AuditEvent
from recovery_app.domain.overrides.entities import AdminOverride
from recovery_app.domain.recovery.entities import RecoveryRequest, TemporaryAccessGrant
from recovery_app.domain.recovery.enums import is_terminal_status

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryRecoveryRequestRepository:
    def __init__(self) -> None:
        self._items: dict[str, RecoveryRequest] = {}

    async def add(self, request: RecoveryRequest, *, max_pending: int) -> Optional[RecoveryRequest]:
        occupied = {
            item.pending_slot
            for item in self._items.values()
            if item.user_id == request.user_id and item.pending_slot is not None
        }
        slot = next((candidate for candidate in range(1, max_pending + 1) if candidate not in occupied), None)
        if slot is None:
            return None
        stored = replace(request, pending_slot=slot, identity_documents=list(request.identity_documents))
        self._items[stored.id] = stored
        return replace(stored)

    async def get_by_id(self, request_id: str) -> Optional[RecoveryRequest]:
        item = self._items.get(request_id)
        return replace(item) if item else None

    async def remove(self, request_id: str) -> bool:
        return self._items.pop(request_id, None) is not None

    async def list_by_user(self, user_id: str) -> Sequence[RecoveryRequest]:
        items = [replace(item) for item in self._items.values() if item.user_id == user_id]
        return sorted(items, key=lambda item: item.created_at or _EPOCH, reverse=True)

    async def register_attempt(
        self,
        request_id: str,
        *,
        succeeded: bool,
        now: datetime,
    ) -> Optional[RecoveryRequest]:
        item = self._items.get(request_id)
        if item is None or item.status != 'pending' or item.attempts >= item.max_attempts:
            return None
        item.attempts += 1
        if succeeded:
            item.status = 'completed'
            item.completed_at = now
            item.pending_slot = None
        return replace(item)

    async def transition(
        self,
        request_id: str,
        *,
        to_status: str,
        now: datetime,
        processed_by: Optional[str] = None,
        processing_notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> Optional[RecoveryRequest]:
        item = self._items.get(request_id)
        if item is None or item.status != 'pending':
            return None
        item.status = to_status
        if is_terminal_status(to_status):
            item.pending_slot = None
            item.completed_at = now
        if processed_by is not None:
            item.processed_by = processed_by
        if processing_notes is not None:
            item.processing_notes = processing_notes
        if rejection_reason is not None:
            item.rejection_reason = rejection_reason
        return replace(item)

    async def set_identity_review(
        self,
        request_id: str,
        *,
        review_status: str,
        reviewer_id: str,
        notes: Optional[str] = None,
    ) -> Optional[RecoveryRequest]:
        item = self._items.get(request_id)
        if item is None or item.status != 'pending' or item.method != 'identity_verification':
            return None
        item.identity_review_status = review_status
        item.processed_by = reviewer_id
        if notes is not None:
            item.processing_notes = notes
        return replace(item)

    async def expire_pending(self, now: datetime, *, user_id: Optional[str] = None) -> Sequence[RecoveryRequest]:
        expired = []
        for item in self._items.values():
            if item.status != 'pending' or not item.is_expired(now):
                continue
            if user_id is not None and item.user_id != user_id:
                continue
            item.status = 'expired'
            item.pending_slot = None
            item.completed_at = now
            expired.append(replace(item))
        return expired

    async def purge_terminal(self, expired_before: datetime) -> int:
        doomed = [key for key, item in self._items.items() if item.is_terminal and item.expires_at < expired_before]
        for key in doomed:
            del self._items[key]
        return len(doomed)


class InMemoryTemporaryAccessRepository:
    def __init__(self) -> None:
        self._items: dict[str, TemporaryAccessGrant] = {}

    async def add(self, grant: TemporaryAccessGrant) -> TemporaryAccessGrant:
        self._items[grant.id] = replace(grant)
        return replace(grant)

    async def get_by_id(self, grant_id: str) -> Optional[TemporaryAccessGrant]:
        item = self._items.get(grant_id)
        return replace(item) if item else None

    async def revoke(
        self,
        grant_id: str,
        *,
        revoked_by: str,
        reason: str,
        now: datetime,
    ) -> Optional[TemporaryAccessGrant]:
        item = self._items.get(grant_id)
        if item is None or item.revoked_at is not None:
            return None
        item.revoked_at = now
        item.revoked_by = revoked_by
        item.revoke_reason = reason
        return replace(item)

    async def list_active(self, user_id: str, now: datetime) -> Sequence[TemporaryAccessGrant]:
        items = [replace(item) for item in self._items.values() if item.user_id == user_id and item.is_active(now)]
        return sorted(items, key=lambda item: item.expires_at, reverse=True)


class InMemoryAdminOverrideRepository:
    def __init__(self) -> None:
        self._items: dict[str, AdminOverride] = {}

    async def add(self, override: AdminOverride) -> AdminOverride:
        self._items[override.id] = replace(override)
        return replace(override)

    async def get_by_id(self, override_id: str) -> Optional[AdminOverride]:
        item = self._items.get(override_id)
        return replace(item) if item else None

    async def remove(self, override_id: str) -> bool:
        return self._items.pop(override_id, None) is not None

    async def list_by_target(self, target_user_id: str) -> Sequence[AdminOverride]:
        items = [replace(item) for item in self._items.values() if item.target_user_id == target_user_id]
        return sorted(items, key=lambda item: item.created_at or _EPOCH, reverse=True)

    async def approve(
        self,
        override_id: str,
        *,
        approver_id: str,
        notes: Optional[str],
        now: datetime,
    ) -> Optional[AdminOverride]:
        item = self._items.get(override_id)
        if item is None or not item.is_awaiting_approval or item.expires_at <= now:
            return None
        item.approved_by = approver_id
        item.approved_at = now
        item.approval_notes = notes
        item.is_active = True
        return replace(item)

    async def revoke(
        self,
        override_id: str,
        *,
        revoked_by: str,
        reason: str,
        now: datetime,
    ) -> Optional[AdminOverride]:
        item = self._items.get(override_id)
        if item is None or item.is_revoked:
            return None
        item.is_active = False
        item.revoked_at = now
        item.revoked_by = revoked_by
        item.revoke_reason = reason
        return replace(item)

    async def find_effective(
        self,
        target_user_id: str,
        override_type: str,
        now: datetime,
    ) -> Optional[AdminOverride]:
        candidates = [
            item
            for item in self._items.values()
            if item.target_user_id == target_user_id and item.override_type == override_type and item.is_effective(now)
        ]
        if not candidates:
            return None
        return replace(max(candidates, key=lambda item: item.expires_at))

    async def register_use(self, override_id: str, now: datetime) -> Optional[AdminOverride]:
        item = self._items.get(override_id)
        if item is None or not item.is_effective(now):
            return None
        item.times_used += 1
        item.last_used_at = now
        return replace(item)

    async def deactivate_expired(self, now: datetime) -> Sequence[AdminOverride]:
        lapsed = []
        for item in self._items.values():
            if item.is_active and item.expires_at <= now:
                item.is_active = False
                lapsed.append(replace(item))
        return lapsed


class InMemoryRoleLookup:
    def __init__(self, roles: Optional[dict[str, set[str]]] = None) -> None:
        self._roles: dict[str, set[str]] = {user: set(values) for user, values in (roles or {}).items()}

    async def roles_of(self, user_id: str) -> set[str]:
        return set(self._roles.get(user_id, set()))

    async def grant(self, user_id: str, role: str, *, granted_by: Optional[str] = None) -> bool:
        current = self._roles.setdefault(user_id, set())
        if role in current:
            return False
        current.add(role)
        return True


class InMemoryAuditEventRepository:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def append(self, event: AuditEvent) -> AuditEvent:
        self.events.append(event)
        return event

    async def list(
        self,
        *,
        target_user_id: Optional[str] = None,
        category: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
    ) -> Sequence[AuditEvent]:
        items = [
            event
            for event in reversed(self.events)
            if (target_user_id is None or event.target_user_id == target_user_id)
            and (category is None or event.category == category)
        ]
        return items[offset:offset + limit]
