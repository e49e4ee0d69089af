"""
Module: revrec_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: audit events are never updated or deleted
      (db/immutability.py).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      chaining every event to its predecessor.
    - seq is allocated from a locked counter row and strictly increases.

Audit relevance:
    Contract versions, allocations, period transitions (including the
    administrative reopen), sweeps, closes and source event outcomes are all
    recorded here.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from revrec_kernel.db.base import Base, EnumString, UUIDString


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Source event lifecycle
    SOURCE_EVENT_INGESTED = "source_event_ingested"
    SOURCE_EVENT_FAILED = "source_event_failed"

    # Contract lifecycle
    CONTRACT_CREATED = "contract_created"
    CONTRACT_ALLOCATED = "contract_allocated"
    CONTRACT_MODIFIED = "contract_modified"
    CONTRACT_CANCELLED = "contract_cancelled"

    # Schedule lifecycle
    MILESTONE_COMPLETED = "milestone_completed"

    # Period lifecycle
    PERIOD_CREATED = "period_created"
    PERIOD_TRANSITIONED = "period_transitioned"
    PERIOD_SWEPT = "period_swept"
    PERIOD_CLOSED = "period_closed"
    PERIOD_REOPENED = "period_reopened"
    PERIOD_PERMANENTLY_CLOSED = "period_permanently_closed"


class AuditEvent(Base):
    """Audit event with hash chain for tamper evidence."""

    __tablename__ = "audit_events"
    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "RevenueContract", "Period", "SourceEvent"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(EnumString(AuditAction), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Null only for the genesis event
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<AuditEvent #{self.seq} {self.action.value} {self.entity_type}>"
