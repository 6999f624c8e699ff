"""Database package for opsmon."""

from opsmon.db.base import Base
from opsmon.db.engine import get_engine, get_session_factory, init_db
from opsmon.db.models import AlertDeliveryRecord, AlertRecord, OnCallRotationRecord

__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "init_db",
    "AlertRecord",
    "AlertDeliveryRecord",
    "OnCallRotationRecord",
]
