# caminho: recovery_app/infrastructure/db/models.py
# Funções:
# - Declarar modelos SQLAlchemy (RecoveryRequestModel, AdminOverrideModel,
#   AuditEventModel, TemporaryAccessGrantModel, UserRoleModel)

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from recovery_app.config.constants import IP_ADDRESS_LENGTH_MAX, USER_AGENT_LENGTH_MAX
from recovery_app.infrastructure.db.base import Base


class RecoveryRequestModel(Base):
    __tablename__ = 'mfa_recovery_requests'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True, server_default=text("'pending'"))

    secret_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text('0'))
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    contact_info: Mapped[Optional[str]] = mapped_column(String(254), nullable=True)
    identity_documents: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    identity_review_status: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'pending'"))
    emergency_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    request_ip: Mapped[Optional[str]] = mapped_column(String(IP_ADDRESS_LENGTH_MAX), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(USER_AGENT_LENGTH_MAX), nullable=True)
    processed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    processing_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # slot 1..N ocupado enquanto pendente; NULL libera a vaga
    pending_slot: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'pending_slot', name='ux_mfa_recovery_pending_slot'),
        CheckConstraint('attempts >= 0 AND attempts <= max_attempts', name='ck_mfa_recovery_attempts'),
        CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'rejected', 'expired')",
            name='ck_mfa_recovery_status',
        ),
        CheckConstraint(
            "method IN ('email', 'sms', 'identity_verification', 'admin_assisted')",
            name='ck_mfa_recovery_method',
        ),
        CheckConstraint("status = 'pending' OR pending_slot IS NULL", name='ck_mfa_recovery_slot_pending'),
        Index('ix_mfa_recovery_user_status', 'user_id', 'status'),
    )


class AdminOverrideModel(Base):
    __tablename__ = 'mfa_admin_overrides'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    target_user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    override_type: Mapped[str] = mapped_column(String(32), nullable=False)
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    emergency_justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text('false'))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text('false'))
    approved_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    revoke_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text('0'))
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            'NOT (is_active AND requires_approval AND approved_by IS NULL)',
            name='ck_mfa_override_approval_required',
        ),
        CheckConstraint(
            "override_type IN ('temporary_disable', 'reset_mfa', 'emergency_access', 'trust_device')",
            name='ck_mfa_override_type',
        ),
        Index('ix_mfa_override_lookup', 'target_user_id', 'override_type', 'expires_at'),
    )


class AuditEventModel(Base):
    __tablename__ = 'mfa_audit_events'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(IP_ADDRESS_LENGTH_MAX), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(USER_AGENT_LENGTH_MAX), nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class TemporaryAccessGrantModel(Base):
    __tablename__ = 'mfa_temporary_access_grants'

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    revoke_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index('ix_mfa_access_active', 'user_id', 'expires_at', 'revoked_at'),)


class UserRoleModel(Base):
    __tablename__ = 'mfa_user_roles'

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text('true'))
    granted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'role', name='ux_mfa_user_role'),
        CheckConstraint("role IN ('user', 'support', 'admin', 'super_admin')", name='ck_mfa_user_role'),
    )
