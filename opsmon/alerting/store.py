"""Alert lifecycle management - Alert Store.

Relational persistence for alerts, delivery outcomes and the on-call
rotation offset. Every write that depends on current state is expressed
as a single conditional statement (partial unique index on insert,
``UPDATE ... WHERE`` on transitions) so concurrent invocations never
corrupt an alert.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import case, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from opsmon.db.models import AlertDeliveryRecord, AlertRecord, OnCallRotationRecord
from opsmon.errors import StoreError
from opsmon.logging_config import log_performance

from .config import AlertLevel, AlertStatus
from .models import Alert, utcnow

logger = logging.getLogger(__name__)

_LEVEL_RANK_SQL = case(
    (AlertRecord.level == AlertLevel.CRITICAL.value, 2),
    (AlertRecord.level == AlertLevel.WARNING.value, 1),
    else_=0,
)

_RANK_TO_LEVEL = {level.rank: level for level in AlertLevel}


class AlertStore:
    """SQLAlchemy-backed store for alerts and their delivery log.

    Args:
        session_factory: Session factory bound to the alerting database.
        clock: Callable returning the current naive UTC time.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.error("Alert store %s failed: %s", operation, exc)
            raise StoreError(f"Alert store {operation} failed: {exc}", cause=exc) from exc
        finally:
            session.close()

    # ── Reads ─────────────────────────────────────────────────────────

    def get(self, alert_id: str) -> Optional[Alert]:
        """Fetch one alert by id, or None if it does not exist."""
        with self._transaction("get") as session:
            record = session.get(AlertRecord, alert_id)
            return Alert.from_record(record) if record is not None else None

    def get_active_by_fingerprint(self, fingerprint: str) -> Optional[Alert]:
        stmt = select(AlertRecord).where(
            AlertRecord.fingerprint == fingerprint,
            AlertRecord.status == AlertStatus.ACTIVE.value,
        )
        with self._transaction("fingerprint lookup") as session:
            record = session.execute(stmt).scalars().first()
            return Alert.from_record(record) if record is not None else None

    @log_performance(threshold_ms=500)
    def list_alerts(
        self,
        component: Optional[str] = None,
        statuses: Optional[Iterable[AlertStatus]] = None,
        since: Optional[datetime] = None,
        oldest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[Alert]:
        """List alerts matching the filters, newest first by default."""
        stmt = select(AlertRecord)
        if component:
            stmt = stmt.where(AlertRecord.component == component)
        if statuses:
            stmt = stmt.where(AlertRecord.status.in_([s.value for s in statuses]))
        if since is not None:
            stmt = stmt.where(AlertRecord.created_at >= since)
        if oldest_first:
            stmt = stmt.order_by(AlertRecord.created_at.asc(), AlertRecord.id.asc())
        else:
            stmt = stmt.order_by(AlertRecord.created_at.desc(), AlertRecord.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        with self._transaction("list") as session:
            return [Alert.from_record(r) for r in session.execute(stmt).scalars()]

    @log_performance(threshold_ms=500)
    def aggregate(
        self,
        since: datetime,
        component: Optional[str] = None,
        statuses: Optional[Iterable[AlertStatus]] = None,
    ) -> List[Dict[str, Any]]:
        """Group alerts created since ``since`` by component and type."""
        stmt = (
            select(
                AlertRecord.component,
                AlertRecord.alert_type,
                func.count().label("count"),
                func.sum(AlertRecord.occurrence_count).label("occurrences"),
                func.max(_LEVEL_RANK_SQL).label("highest_rank"),
                func.min(AlertRecord.created_at).label("first_seen"),
                func.max(AlertRecord.updated_at).label("last_seen"),
            )
            .where(AlertRecord.created_at >= since)
            .group_by(AlertRecord.component, AlertRecord.alert_type)
            .order_by(func.count().desc(), AlertRecord.component, AlertRecord.alert_type)
        )
        if component:
            stmt = stmt.where(AlertRecord.component == component)
        if statuses:
            stmt = stmt.where(AlertRecord.status.in_([s.value for s in statuses]))

        with self._transaction("aggregate") as session:
            rows = session.execute(stmt).all()
        return [
            {
                "component": row.component,
                "alert_type": row.alert_type,
                "count": int(row.count),
                "occurrences": int(row.occurrences or 0),
                "highest_level": _RANK_TO_LEVEL[int(row.highest_rank or 0)],
                "first_seen": row.first_seen,
                "last_seen": row.last_seen,
            }
            for row in rows
        ]

    @log_performance(threshold_ms=500)
    def stats(self, component: Optional[str] = None) -> Dict[str, Any]:
        """Raw counters and lifecycle timings for statistics reporting."""

        def _scoped(stmt):
            if component:
                return stmt.where(AlertRecord.component == component)
            return stmt

        with self._transaction("stats") as session:
            by_status = dict(session.execute(
                _scoped(select(AlertRecord.status, func.count()).group_by(AlertRecord.status))
            ).all())
            by_level = dict(session.execute(
                _scoped(select(AlertRecord.level, func.count()).group_by(AlertRecord.level))
            ).all())
            by_component = dict(session.execute(
                _scoped(
                    select(AlertRecord.component, func.count()).group_by(AlertRecord.component)
                )
            ).all())
            escalated = session.execute(
                _scoped(
                    select(func.count())
                    .select_from(AlertRecord)
                    .where(AlertRecord.escalation_level > 0)
                )
            ).scalar_one()
            timings = session.execute(
                _scoped(
                    select(
                        AlertRecord.created_at,
                        AlertRecord.acknowledged_at,
                        AlertRecord.resolved_at,
                    ).where(
                        (AlertRecord.acknowledged_at.is_not(None))
                        | (AlertRecord.resolved_at.is_not(None))
                    )
                )
            ).all()

        return {
            "by_status": {k: int(v) for k, v in by_status.items()},
            "by_level": {k: int(v) for k, v in by_level.items()},
            "by_component": {k: int(v) for k, v in by_component.items()},
            "escalated": int(escalated),
            "timings": [(r.created_at, r.acknowledged_at, r.resolved_at) for r in timings],
        }

    def deliveries(self, alert_id: str) -> List[Dict[str, Any]]:
        """Delivery attempts recorded for an alert, oldest first."""
        stmt = (
            select(AlertDeliveryRecord)
            .where(AlertDeliveryRecord.alert_id == alert_id)
            .order_by(AlertDeliveryRecord.id)
        )
        with self._transaction("delivery lookup") as session:
            return [
                {
                    "channel": r.channel,
                    "target": r.target,
                    "outcome": r.outcome,
                    "error": r.error,
                    "escalation_level": r.escalation_level,
                    "attempted_at": r.attempted_at.isoformat(),
                }
                for r in session.execute(stmt).scalars()
            ]

    # ── Writes ────────────────────────────────────────────────────────

    def insert_if_absent(self, alert: Alert) -> Tuple[Alert, bool]:
        """Insert ``alert`` unless an active alert already holds its fingerprint.

        Returns the stored alert and whether this call created it. Losing an
        insert race to a concurrent invocation is reported as not created,
        with the winner's row.
        """
        for attempt in range(2):
            session = self._session_factory()
            try:
                with session.begin():
                    session.add(_to_record(alert))
                return alert, True
            except IntegrityError:
                logger.info(
                    "Active alert for %s/%s already exists, treating raise as duplicate",
                    alert.component, alert.alert_type,
                    extra={"component": alert.component},
                )
            except SQLAlchemyError as exc:
                logger.error("Alert store insert failed: %s", exc)
                raise StoreError(f"Alert store insert failed: {exc}", cause=exc) from exc
            finally:
                session.close()

            existing = self.get_active_by_fingerprint(alert.fingerprint)
            if existing is not None:
                return existing, False
            # The winning alert left the active state before we could read it.
            logger.debug("Active fingerprint vanished, retrying insert (attempt %d)", attempt + 1)

        raise StoreError(
            f"Could not insert alert for {alert.component}/{alert.alert_type}: "
            "fingerprint conflict did not resolve"
        )

    def increment_occurrence(self, alert_id: str) -> bool:
        """Count one more occurrence on an active alert."""
        stmt = (
            update(AlertRecord)
            .where(
                AlertRecord.id == alert_id,
                AlertRecord.status == AlertStatus.ACTIVE.value,
            )
            .values(
                occurrence_count=AlertRecord.occurrence_count + 1,
                updated_at=self._clock(),
            )
        )
        with self._transaction("occurrence update") as session:
            return session.execute(stmt).rowcount == 1

    def transition_status(
        self,
        alert_id: str,
        from_statuses: Iterable[AlertStatus],
        to_status: AlertStatus,
        actor: str,
    ) -> bool:
        """Move an alert to ``to_status`` if it is still in one of ``from_statuses``.

        Returns False when the alert was not in an allowed status at write time.
        """
        now = self._clock()
        values: Dict[str, Any] = {"status": to_status.value, "updated_at": now}
        if to_status == AlertStatus.ACKNOWLEDGED:
            values.update(acknowledged_at=now, acknowledged_by=actor)
        elif to_status == AlertStatus.RESOLVED:
            values.update(resolved_at=now, resolved_by=actor)

        stmt = (
            update(AlertRecord)
            .where(
                AlertRecord.id == alert_id,
                AlertRecord.status.in_([s.value for s in from_statuses]),
            )
            .values(**values)
        )
        with self._transaction("status update") as session:
            return session.execute(stmt).rowcount == 1

    def update_escalation(
        self,
        alert_id: str,
        expected_level: int,
        new_level: int,
        metadata: Dict[str, Any],
    ) -> bool:
        """Raise the escalation level if the alert is active and still at ``expected_level``."""
        stmt = (
            update(AlertRecord)
            .where(
                AlertRecord.id == alert_id,
                AlertRecord.status == AlertStatus.ACTIVE.value,
                AlertRecord.escalation_level == expected_level,
            )
            .values({
                AlertRecord.escalation_level: new_level,
                AlertRecord.alert_metadata: metadata,
                AlertRecord.updated_at: self._clock(),
            })
        )
        with self._transaction("escalation update") as session:
            return session.execute(stmt).rowcount == 1

    def record_deliveries(self, alert_id: str, results, escalation_level: int = 0) -> int:
        """Append one delivery row per attempt."""
        rows = [
            {
                "alert_id": alert_id,
                "channel": result.channel.value,
                "target": result.target,
                "outcome": result.outcome.value,
                "error": result.error,
                "escalation_level": escalation_level,
                "attempted_at": result.attempted_at,
            }
            for result in results
        ]
        if not rows:
            return 0
        with self._transaction("delivery insert") as session:
            session.execute(insert(AlertDeliveryRecord), rows)
        return len(rows)

    def delete_resolved(self, resolved_before: Optional[datetime] = None) -> int:
        """Delete resolved alerts (and their delivery rows).

        Args:
            resolved_before: Only delete alerts resolved before this time.
                None deletes every resolved alert.

        Returns:
            Number of alerts deleted.
        """
        conditions = [AlertRecord.status == AlertStatus.RESOLVED.value]
        if resolved_before is not None:
            conditions.append(AlertRecord.resolved_at < resolved_before)
        doomed = select(AlertRecord.id).where(*conditions)

        with self._transaction("cleanup") as session:
            session.execute(
                delete(AlertDeliveryRecord).where(AlertDeliveryRecord.alert_id.in_(doomed))
            )
            return session.execute(delete(AlertRecord).where(*conditions)).rowcount

    # ── On-call rotation ──────────────────────────────────────────────

    def get_rotation_offset(self, name: str) -> int:
        with self._transaction("rotation lookup") as session:
            record = session.get(OnCallRotationRecord, name)
            return record.rotation_offset if record is not None else 0

    def advance_rotation(self, name: str, actor: str) -> int:
        """Atomically add one to the rotation offset and return the new value."""
        for _ in range(2):
            session = self._session_factory()
            try:
                with session.begin():
                    now = self._clock()
                    result = session.execute(
                        update(OnCallRotationRecord)
                        .where(OnCallRotationRecord.name == name)
                        .values(
                            rotation_offset=OnCallRotationRecord.rotation_offset + 1,
                            updated_at=now,
                            updated_by=actor,
                        )
                    )
                    if result.rowcount == 0:
                        session.add(OnCallRotationRecord(
                            name=name, rotation_offset=1, updated_at=now, updated_by=actor,
                        ))
                        session.flush()
                    return session.execute(
                        select(OnCallRotationRecord.rotation_offset)
                        .where(OnCallRotationRecord.name == name)
                    ).scalar_one()
            except IntegrityError:
                # Another invocation created the row first; the update path applies now.
                logger.debug("Rotation row %s created concurrently, retrying", name)
            except SQLAlchemyError as exc:
                logger.error("Alert store rotation update failed: %s", exc)
                raise StoreError(f"Alert store rotation update failed: {exc}", cause=exc) from exc
            finally:
                session.close()
        raise StoreError(f"Could not advance on-call rotation '{name}'")


def _to_record(alert: Alert) -> AlertRecord:
    return AlertRecord(
        id=alert.alert_id,
        component=alert.component,
        level=alert.level.value,
        alert_type=alert.alert_type,
        message=alert.message,
        fingerprint=alert.fingerprint,
        alert_metadata=alert.metadata or None,
        status=alert.status.value,
        escalation_level=alert.escalation_level,
        occurrence_count=alert.occurrence_count,
        created_at=alert.created_at,
        updated_at=alert.updated_at,
        acknowledged_at=alert.acknowledged_at,
        acknowledged_by=alert.acknowledged_by,
        resolved_at=alert.resolved_at,
        resolved_by=alert.resolved_by,
    )
