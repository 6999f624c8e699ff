"""Alert lifecycle management - Alert model."""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .config import AlertLevel, AlertStatus

FINGERPRINT_SEPARATOR = "\x1f"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_fingerprint(component: str, alert_type: str, message: str) -> str:
    """Deduplication key for an alert: sha256 of component, type and message."""
    raw = FINGERPRINT_SEPARATOR.join((component, alert_type, message))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class Alert:
    """Represents a single alert in the system."""

    component: str
    level: AlertLevel
    alert_type: str
    message: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: AlertStatus = AlertStatus.ACTIVE
    escalation_level: int = 0
    occurrence_count: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    def __post_init__(self):
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.component, self.alert_type, self.message)

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    def age(self, now: datetime) -> timedelta:
        return now - self.created_at

    @classmethod
    def from_record(cls, record) -> "Alert":
        """Build an Alert from an AlertRecord row."""
        return cls(
            alert_id=record.id,
            component=record.component,
            level=AlertLevel(record.level),
            alert_type=record.alert_type,
            message=record.message,
            metadata=dict(record.alert_metadata or {}),
            status=AlertStatus(record.status),
            escalation_level=record.escalation_level,
            occurrence_count=record.occurrence_count,
            created_at=record.created_at,
            updated_at=record.updated_at,
            acknowledged_at=record.acknowledged_at,
            acknowledged_by=record.acknowledged_by,
            resolved_at=record.resolved_at,
            resolved_by=record.resolved_by,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.alert_id,
            "component": self.component,
            "level": self.level.value,
            "type": self.alert_type,
            "message": self.message,
            "metadata": self.metadata,
            "status": self.status.value,
            "escalation_level": self.escalation_level,
            "occurrence_count": self.occurrence_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
