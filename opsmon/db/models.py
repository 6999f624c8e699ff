"""SQLAlchemy ORM models for opsmon.

Tables:
- alerts: one row per alert, with the partial unique index that keeps
  at most one active alert per fingerprint
- alert_deliveries: insert-only log of every channel delivery attempt
- oncall_rotation: persisted rotation offset, advanced explicitly
"""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

from opsmon.db.base import Base

ACTIVE_PREDICATE = text("status = 'active'")


class AlertRecord(Base):
    """Persisted alert with status and escalation state."""

    __tablename__ = "alerts"

    id = Column(String(36), primary_key=True)
    component = Column(String(100), nullable=False)
    level = Column(String(20), nullable=False)  # info, warning, critical
    alert_type = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    fingerprint = Column(String(64), nullable=False)  # sha256 hex of component/type/message
    alert_metadata = Column("metadata", JSON)
    status = Column(String(20), nullable=False, default="active")
    escalation_level = Column(Integer, nullable=False, default=0)
    occurrence_count = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    acknowledged_at = Column(DateTime)
    acknowledged_by = Column(String(100))
    resolved_at = Column(DateTime)
    resolved_by = Column(String(100))

    __table_args__ = (
        Index(
            "uq_alerts_active_fingerprint",
            "fingerprint",
            unique=True,
            postgresql_where=ACTIVE_PREDICATE,
            sqlite_where=ACTIVE_PREDICATE,
        ),
        Index("ix_alerts_component_status", "component", "status"),
        Index("ix_alerts_created_at", "created_at"),
        CheckConstraint(
            "status IN ('active', 'acknowledged', 'resolved')",
            name="ck_alerts_status",
        ),
        CheckConstraint("escalation_level >= 0", name="ck_alerts_escalation_level"),
    )

    def __repr__(self) -> str:
        return f"<AlertRecord({self.id} {self.component}/{self.alert_type} {self.status})>"


class AlertDeliveryRecord(Base):
    """One delivery attempt of one alert to one destination."""

    __tablename__ = "alert_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(
        String(36), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    channel = Column(String(20), nullable=False)  # mail, chat
    target = Column(String(500), nullable=False)
    outcome = Column(String(20), nullable=False)  # delivered, suppressed, failed
    error = Column(Text)
    escalation_level = Column(Integer, nullable=False, default=0)
    attempted_at = Column(DateTime, nullable=False)


class OnCallRotationRecord(Base):
    """Rotation offset for a named on-call schedule."""

    __tablename__ = "oncall_rotation"

    name = Column(String(50), primary_key=True)
    rotation_offset = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False)
    updated_by = Column(String(100))
