"""
Database Manager for Ferment Analyzer.

Owns the SQLite file and every batch workflow that touches it. The
analysis core stays pure; this module loads records, hands them to the
core and writes the results back.

Operations:
- Batches, phases and phase actions
- Standard protocol templates applied in one transaction
- Reading ingest (with non-fatal alert scanning and 24h deduplication)
- Phase status evaluation, advance and skip
- Cleanup review and apply (exclusions, trim boundaries, recap invalidation)
- Lazy timeline load (recap generation + consolidation)
- Alert acknowledgement/resolution
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import create_engine, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ferment_analyzer.config import Config, get_config
from ferment_analyzer.core.alerts import run_alert_detection
from ferment_analyzer.core.models import (
    Alert,
    AlertSeverity,
    Batch,
    BatchStatus,
    CleanupReview,
    CompletionCriteria,
    DailyRecap,
    EntryType,
    EvaluationContext,
    ExcludeReason,
    Phase,
    PhaseAction,
    PhaseEvaluation,
    PhaseStatus,
    PhaseTransition,
    ProtocolTemplate,
    Reading,
    TemperatureRange,
    TemperatureUnit,
    TimelineEntry,
    TimelineItem,
)
from ferment_analyzer.core.outliers import detect_outliers
from ferment_analyzer.core.phase_engine import evaluate_phase
from ferment_analyzer.core.recap import RecapStore, generate_missing_recaps
from ferment_analyzer.core.templates import get_protocol, select_phases
from ferment_analyzer.core.timeline import consolidate_readings, merge_timeline
from ferment_analyzer.database.models import (
    Base,
    Alert as DBAlert,
    Batch as DBBatch,
    DailyRecap as DBDailyRecap,
    Phase as DBPhase,
    PhaseAction as DBPhaseAction,
    Reading as DBReading,
    TimelineEntry as DBTimelineEntry,
)
from ferment_analyzer.utils.dates import (
    ensure_utc,
    local_date,
    resolve_timezone,
    start_of_local_date,
    utcnow,
)

logger = logging.getLogger(__name__)

_CRITERIA = TypeAdapter(CompletionCriteria)

_TRIM_REASONS = (ExcludeReason.HEAD_TRIM, ExcludeReason.TAIL_TRIM)


class DatabaseError(Exception):
    """Base exception for database operations."""
    pass


class BatchNotFoundError(DatabaseError):
    """Raised when a batch ID does not exist."""
    pass


class PhaseNotFoundError(DatabaseError):
    """Raised when a phase (or an active phase) does not exist."""
    pass


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    """Aware datetime -> naive UTC for storage."""
    if value is None:
        return None
    return ensure_utc(value).replace(tzinfo=None)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


class DatabaseManager(RecapStore):
    """
    SQLite-backed store for batches and their timelines.

    Features:
    - Single-file SQLite database
    - Context manager for safe transactions
    - Atomic insert-if-absent for daily recaps (unique constraint)
    - Implements RecapStore so the recap generator can run against it
    """

    def __init__(self, database_path: Optional[Path] = None, config: Optional[Config] = None):
        """
        Initialize the database manager.

        Args:
            database_path: Path to SQLite database. If None, uses config default.
            config: Configuration to use. If None, uses the global config.
        """
        self.config = config or get_config()

        if database_path is None:
            database_path = self.config.database.path

        # Ensure parent directory exists
        database_path = Path(database_path)
        database_path.parent.mkdir(parents=True, exist_ok=True)

        self.database_path = database_path
        self.database_url = f"sqlite:///{database_path}"
        self.timezone = self.config.timeline.timezone

        logger.info(f"Using database: {database_path}")

        self._engine = create_engine(
            self.database_url,
            echo=self.config.database.echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

        self._SessionFactory = sessionmaker(bind=self._engine, expire_on_commit=False)

        self._init_database()

    def _init_database(self) -> None:
        """Create all tables if they don't exist."""
        try:
            Base.metadata.create_all(self._engine, checkfirst=True)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(f"Database initialization failed: {e}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Provide a transactional session context.

        Usage:
            with db_manager.session() as session:
                session.add(record)
                # Auto-commits on success, rolls back on exception
        """
        session = self._SessionFactory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Session error: {e}")
            raise
        finally:
            session.close()

    # =========================================================================
    # Batches
    # =========================================================================

    def create_batch(
        self,
        name: str,
        style: Optional[str] = None,
        original_gravity: Optional[float] = None,
        created_at: Optional[datetime] = None,
        status: BatchStatus = BatchStatus.ACTIVE,
    ) -> Batch:
        """Create a batch. ``created_at`` defaults to now."""
        with self.session() as session:
            record = DBBatch(
                name=name,
                style=style,
                status=status,
                original_gravity=original_gravity,
                created_at=_naive(created_at or utcnow()),
            )
            session.add(record)
            session.flush()

            logger.info(f"Created batch: {record.name} (ID: {record.id})")
            return self._map_batch(record)

    def create_batch_from_template(
        self,
        name: str,
        protocol: Union[ProtocolTemplate, str],
        style: Optional[str] = None,
        original_gravity: Optional[float] = None,
        enabled_optional: Optional[Iterable[str]] = None,
        start: bool = True,
        created_at: Optional[datetime] = None,
    ) -> Batch:
        """
        Create a batch with a standard protocol in a single transaction.

        With ``start`` the first phase is activated at ``created_at``. If any
        phase fails validation nothing is written.
        """
        if isinstance(protocol, str):
            protocol = get_protocol(protocol)
        created_at = _naive(created_at or utcnow())

        with self.session() as session:
            record = DBBatch(
                name=name,
                style=style or protocol.name,
                status=BatchStatus.ACTIVE,
                original_gravity=original_gravity,
                created_at=created_at,
            )
            session.add(record)
            session.flush()

            self._insert_protocol(session, record.id, protocol, enabled_optional)
            if start:
                self._activate_first_phase(session, record, created_at)

            logger.info(f"Created batch: {record.name} (ID: {record.id}) from '{protocol.key}' protocol")
            return self._map_batch(record)

    def get_batch(self, batch_id: int) -> Batch:
        """
        Get a batch by ID.

        Raises:
            BatchNotFoundError: If the batch doesn't exist
        """
        with self.session() as session:
            return self._map_batch(self._require_batch(session, batch_id))

    def list_batches(self, status: Optional[BatchStatus] = None) -> List[Batch]:
        with self.session() as session:
            query = session.query(DBBatch)
            if status is not None:
                query = query.filter(DBBatch.status == status)
            return [self._map_batch(b) for b in query.order_by(desc(DBBatch.created_at)).all()]

    def _require_batch(self, session: Session, batch_id: int) -> DBBatch:
        batch = session.get(DBBatch, batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch {batch_id} not found")
        return batch

    # =========================================================================
    # Phases
    # =========================================================================

    def add_phase(
        self,
        batch_id: int,
        name: str,
        completion_criteria: Optional[Union[CompletionCriteria, Dict[str, Any]]] = None,
        expected_duration_days: Optional[int] = None,
        target_temp_low: Optional[float] = None,
        target_temp_high: Optional[float] = None,
        target_temp_unit: Optional[TemperatureUnit] = None,
        notes: Optional[str] = None,
    ) -> Phase:
        """
        Append a pending phase to the end of a batch protocol.

        ``completion_criteria`` may be a criteria model or the raw JSON
        dict (camelCase or snake_case keys); it is validated before storage.
        """
        with self.session() as session:
            self._require_batch(session, batch_id)
            record = self._insert_phase(
                session,
                batch_id,
                name=name,
                completion_criteria=completion_criteria,
                expected_duration_days=expected_duration_days,
                target_temp_low=target_temp_low,
                target_temp_high=target_temp_high,
                target_temp_unit=target_temp_unit,
                notes=notes,
            )
            return self._map_phase(record)

    def _insert_phase(
        self,
        session: Session,
        batch_id: int,
        name: str,
        completion_criteria: Optional[Union[CompletionCriteria, Dict[str, Any]]] = None,
        expected_duration_days: Optional[int] = None,
        target_temp_low: Optional[float] = None,
        target_temp_high: Optional[float] = None,
        target_temp_unit: Optional[TemperatureUnit] = None,
        notes: Optional[str] = None,
    ) -> DBPhase:
        criteria_json = None
        if completion_criteria is not None:
            criteria = _CRITERIA.validate_python(completion_criteria)
            criteria_json = _CRITERIA.dump_python(criteria, mode="json", by_alias=True)

        last_order = (
            session.query(func.max(DBPhase.sort_order))
            .filter(DBPhase.batch_id == batch_id)
            .scalar()
        )
        record = DBPhase(
            batch_id=batch_id,
            name=name,
            sort_order=0 if last_order is None else last_order + 1,
            status=PhaseStatus.PENDING,
            expected_duration_days=expected_duration_days,
            target_temp_low=target_temp_low,
            target_temp_high=target_temp_high,
            target_temp_unit=target_temp_unit,
            completion_criteria=criteria_json,
            notes=notes,
        )
        session.add(record)
        session.flush()

        logger.debug(f"Added phase '{record.name}' to batch {batch_id} at position {record.sort_order}")
        return record

    def apply_protocol(
        self,
        batch_id: int,
        protocol: Union[ProtocolTemplate, str],
        enabled_optional: Optional[Iterable[str]] = None,
    ) -> List[Phase]:
        """
        Append a standard protocol's phases to a batch in one transaction.

        Args:
            batch_id: Batch to extend
            protocol: Template or its key ("red", "white")
            enabled_optional: Slugs of optional phases to include (None: all)

        Returns:
            The created phases in protocol order
        """
        if isinstance(protocol, str):
            protocol = get_protocol(protocol)

        with self.session() as session:
            self._require_batch(session, batch_id)
            records = self._insert_protocol(session, batch_id, protocol, enabled_optional)
            return [self._map_phase(r) for r in records]

    def _insert_protocol(
        self,
        session: Session,
        batch_id: int,
        protocol: ProtocolTemplate,
        enabled_optional: Optional[Iterable[str]],
    ) -> List[DBPhase]:
        records = [
            self._insert_phase(
                session,
                batch_id,
                name=template.name,
                completion_criteria=template.completion_criteria,
                expected_duration_days=template.expected_duration_days,
                target_temp_low=template.target_temp_low,
                target_temp_high=template.target_temp_high,
                target_temp_unit=template.target_temp_unit,
                notes=template.description or None,
            )
            for template in select_phases(protocol, enabled_optional)
        ]
        logger.info(f"Applied protocol '{protocol.name}' to batch {batch_id} ({len(records)} phases)")
        return records

    def get_phases(self, batch_id: int) -> List[Phase]:
        """All phases of a batch in protocol order."""
        with self.session() as session:
            phases = (
                session.query(DBPhase)
                .filter(DBPhase.batch_id == batch_id)
                .order_by(DBPhase.sort_order)
                .all()
            )
            return [self._map_phase(p) for p in phases]

    def get_current_phase(self, batch_id: int) -> Optional[Phase]:
        """The batch's active phase, or None."""
        with self.session() as session:
            batch = self._require_batch(session, batch_id)
            if batch.current_phase_id is None:
                return None
            phase = session.get(DBPhase, batch.current_phase_id)
            return self._map_phase(phase) if phase is not None else None

    def start_protocol(self, batch_id: int, now: Optional[datetime] = None) -> Optional[Phase]:
        """
        Activate the first pending phase if no phase is active yet.

        Returns:
            The active phase, or None if the batch has no pending phases
        """
        with self.session() as session:
            batch = self._require_batch(session, batch_id)
            first = self._activate_first_phase(session, batch, _naive(now or utcnow()))
            return self._map_phase(first) if first is not None else None

    def _activate_first_phase(self, session: Session, batch: DBBatch, now: datetime) -> Optional[DBPhase]:
        if batch.current_phase_id is not None:
            return session.get(DBPhase, batch.current_phase_id)

        first = self._next_pending(session, batch.id, after=None)
        if first is None:
            logger.warning(f"Batch {batch.id} has no pending phases to start")
            return None

        first.status = PhaseStatus.ACTIVE
        first.started_at = now
        batch.current_phase_id = first.id
        session.flush()

        logger.info(f"Started protocol for batch {batch.id} with phase '{first.name}'")
        return first

    def advance_phase(self, batch_id: int, now: Optional[datetime] = None) -> PhaseTransition:
        """
        Complete the active phase and activate the next pending one.

        Raises:
            PhaseNotFoundError: If the batch has no active phase
        """
        return self._transition(batch_id, PhaseStatus.COMPLETED, now)

    def skip_phase(self, batch_id: int, now: Optional[datetime] = None) -> PhaseTransition:
        """Mark the active phase skipped and activate the next pending one."""
        return self._transition(batch_id, PhaseStatus.SKIPPED, now)

    def _next_pending(self, session: Session, batch_id: int, after: Optional[int]) -> Optional[DBPhase]:
        query = session.query(DBPhase).filter(
            DBPhase.batch_id == batch_id,
            DBPhase.status == PhaseStatus.PENDING,
        )
        if after is not None:
            query = query.filter(DBPhase.sort_order > after)
        return query.order_by(DBPhase.sort_order).first()

    def _transition(
        self,
        batch_id: int,
        final_status: PhaseStatus,
        now: Optional[datetime],
    ) -> PhaseTransition:
        now = _naive(now or utcnow())
        skipped = final_status == PhaseStatus.SKIPPED

        with self.session() as session:
            batch = self._require_batch(session, batch_id)
            current = (
                session.get(DBPhase, batch.current_phase_id)
                if batch.current_phase_id is not None else None
            )
            if current is None:
                raise PhaseNotFoundError(f"Batch {batch_id} has no active phase")

            current.status = final_status
            current.completed_at = now

            following = self._next_pending(session, batch_id, after=current.sort_order)
            if following is not None:
                following.status = PhaseStatus.ACTIVE
                following.started_at = now
                batch.current_phase_id = following.id
            else:
                batch.current_phase_id = None

            session.add(DBTimelineEntry(
                batch_id=batch_id,
                entry_type=EntryType.PHASE_CHANGE,
                source="system",
                data={
                    "type": "phase_change",
                    "fromPhase": current.name,
                    "toPhase": following.name if following is not None else None,
                    "skipped": skipped,
                },
                created_at=now,
            ))
            session.flush()

            verb = "Skipped" if skipped else "Completed"
            target = f"'{following.name}'" if following is not None else "end of protocol"
            logger.info(f"{verb} phase '{current.name}' for batch {batch_id}, now at {target}")

            return PhaseTransition(
                from_phase=self._map_phase(current),
                to_phase=self._map_phase(following) if following is not None else None,
                skipped=skipped,
            )

    # =========================================================================
    # Phase Actions
    # =========================================================================

    def add_action(
        self,
        phase_id: int,
        name: str,
        interval_days: Optional[float] = None,
        due_at: Optional[datetime] = None,
        trigger_gravity: Optional[float] = None,
        trigger_attenuation_fraction: Optional[float] = None,
    ) -> PhaseAction:
        with self.session() as session:
            if session.get(DBPhase, phase_id) is None:
                raise PhaseNotFoundError(f"Phase {phase_id} not found")
            last_order = (
                session.query(func.max(DBPhaseAction.sort_order))
                .filter(DBPhaseAction.phase_id == phase_id)
                .scalar()
            )
            record = DBPhaseAction(
                phase_id=phase_id,
                name=name,
                sort_order=0 if last_order is None else last_order + 1,
                interval_days=interval_days,
                due_at=_naive(due_at),
                trigger_gravity=trigger_gravity,
                trigger_attenuation_fraction=trigger_attenuation_fraction,
            )
            session.add(record)
            session.flush()
            return self._map_action(record)

    def get_actions(self, phase_id: int) -> List[PhaseAction]:
        with self.session() as session:
            actions = (
                session.query(DBPhaseAction)
                .filter(DBPhaseAction.phase_id == phase_id)
                .order_by(DBPhaseAction.sort_order)
                .all()
            )
            return [self._map_action(a) for a in actions]

    def complete_action(self, action_id: int, now: Optional[datetime] = None) -> PhaseAction:
        """
        Record an action as done.

        Also writes a note entry named after the action so action_count
        criteria can count it.
        """
        now = _naive(now or utcnow())
        with self.session() as session:
            action = session.get(DBPhaseAction, action_id)
            if action is None:
                raise DatabaseError(f"Action {action_id} not found")

            action.last_completed_at = now
            session.add(DBTimelineEntry(
                batch_id=action.phase.batch_id,
                entry_type=EntryType.NOTE,
                source="manual",
                data={"type": "note", "content": action.name, "actionId": action.id},
                created_at=now,
            ))
            session.flush()

            logger.info(f"Completed action '{action.name}' (ID: {action.id})")
            return self._map_action(action)

    # =========================================================================
    # Readings and Timeline Entries
    # =========================================================================

    def add_reading(
        self,
        batch_id: int,
        gravity: float,
        temperature: Optional[float] = None,
        temperature_unit: TemperatureUnit = TemperatureUnit.FAHRENHEIT,
        recorded_at: Optional[datetime] = None,
        source: str = "manual",
        now: Optional[datetime] = None,
    ) -> Reading:
        """
        Store a reading, then scan for alerts.

        The reading is committed before alert detection runs; a failure in
        detection is logged and never undoes the ingest.

        Returns:
            The stored reading
        """
        now = ensure_utc(now) if now is not None else utcnow()
        recorded_at = _naive(recorded_at or now)

        with self.session() as session:
            batch = self._require_batch(session, batch_id)
            newest = (
                session.query(func.max(DBReading.recorded_at))
                .filter(DBReading.batch_id == batch_id, DBReading.is_excluded == False)  # noqa: E712
                .scalar()
            )
            record = DBReading(
                batch_id=batch_id,
                gravity=gravity,
                temperature=temperature,
                temperature_unit=temperature_unit,
                recorded_at=recorded_at,
                source=source,
            )
            session.add(record)
            session.flush()

            if newest is None or recorded_at >= newest:
                batch.final_gravity = gravity
            if batch.original_gravity is None:
                batch.original_gravity = gravity

            reading = self._map_reading(record)

        logger.debug(f"Stored reading {reading.id} for batch {batch_id}: {gravity:.3f} SG")

        self.scan_alerts(batch_id, now=now)
        return reading

    def get_readings(self, batch_id: int, include_excluded: bool = False) -> List[Reading]:
        """Readings for a batch, oldest first."""
        with self.session() as session:
            query = session.query(DBReading).filter(DBReading.batch_id == batch_id)
            if not include_excluded:
                query = query.filter(DBReading.is_excluded == False)  # noqa: E712
            return [self._map_reading(r) for r in query.order_by(DBReading.recorded_at, DBReading.id).all()]

    def add_entry(
        self,
        batch_id: int,
        entry_type: EntryType,
        data: Dict[str, Any],
        source: str = "manual",
        created_at: Optional[datetime] = None,
    ) -> TimelineEntry:
        """Record an addition, rack, taste or note on the timeline."""
        with self.session() as session:
            self._require_batch(session, batch_id)
            record = DBTimelineEntry(
                batch_id=batch_id,
                entry_type=entry_type,
                source=source,
                data=data,
                created_at=_naive(created_at or utcnow()),
            )
            session.add(record)
            session.flush()
            return self._map_entry(record)

    def get_entries(self, batch_id: int, limit: Optional[int] = None) -> List[TimelineEntry]:
        """Persisted timeline entries, newest first."""
        with self.session() as session:
            query = (
                session.query(DBTimelineEntry)
                .filter(DBTimelineEntry.batch_id == batch_id)
                .order_by(desc(DBTimelineEntry.created_at), desc(DBTimelineEntry.id))
            )
            if limit is not None:
                query = query.limit(limit)
            return [self._map_entry(e) for e in query.all()]

    def get_entry_feed(self, batch_id: int, limit: Optional[int] = None) -> List[TimelineEntry]:
        """
        Newest-first feed of entries plus non-excluded readings.

        Readings are projected into TimelineEntry form so the phase
        evaluator and alert detector can consume a single list.
        """
        with self.session() as session:
            query = (
                session.query(DBReading)
                .filter(DBReading.batch_id == batch_id, DBReading.is_excluded == False)  # noqa: E712
                .order_by(desc(DBReading.recorded_at), desc(DBReading.id))
            )
            if limit is not None:
                query = query.limit(limit)
            projected = [
                TimelineEntry.from_reading(self._map_reading(r), source=r.source)
                for r in query.all()
            ]

        feed = projected + self.get_entries(batch_id, limit=limit)
        feed.sort(key=lambda e: e.created_at, reverse=True)
        return feed[:limit] if limit is not None else feed

    # =========================================================================
    # Alerts
    # =========================================================================

    def scan_alerts(self, batch_id: int, now: Optional[datetime] = None) -> List[int]:
        """
        Run alert detection over the recent feed and record new alerts.

        Never raises: detection runs after the reading is already stored.

        Returns:
            IDs of newly recorded alerts
        """
        if not self.config.alerts.enabled:
            return []

        try:
            entries = self.get_entry_feed(batch_id, limit=self.config.alerts.feed_limit)
            phase = self.get_current_phase(batch_id)
            created = []
            for alert in run_alert_detection(entries, phase):
                alert_id = self.record_alert(batch_id, alert, now=now)
                if alert_id is not None:
                    created.append(alert_id)
            return created
        except Exception:
            logger.exception(f"Alert detection failed for batch {batch_id}")
            return []

    def record_alert(self, batch_id: int, alert: Alert, now: Optional[datetime] = None) -> Optional[int]:
        """
        Store an alert and its timeline entry unless it is a repeat.

        An unresolved alert of the same type created within the dedup window
        suppresses the new one.

        Returns:
            Database ID of the alert, or None if suppressed
        """
        now = ensure_utc(now) if now is not None else utcnow()
        cutoff = _naive(now - timedelta(hours=self.config.alerts.dedup_hours))

        with self.session() as session:
            existing = (
                session.query(DBAlert)
                .filter(
                    DBAlert.batch_id == batch_id,
                    DBAlert.alert_type == alert.alert_type,
                    DBAlert.resolved == False,  # noqa: E712
                    DBAlert.created_date >= cutoff,
                )
                .first()
            )
            if existing is not None:
                logger.debug(
                    f"Suppressed duplicate {alert.alert_type.value} alert for batch {batch_id} "
                    f"(alert {existing.id} still open)"
                )
                return None

            entry = DBTimelineEntry(
                batch_id=batch_id,
                entry_type=EntryType.ALERT,
                source="system",
                data={
                    "type": "alert",
                    "alertType": alert.alert_type.value,
                    "severity": alert.severity.value,
                    "message": alert.message,
                },
                created_at=_naive(now),
            )
            session.add(entry)
            session.flush()

            record = DBAlert(
                batch_id=batch_id,
                timeline_entry_id=entry.id,
                alert_type=alert.alert_type,
                severity=alert.severity,
                message=alert.message,
                created_date=_naive(now),
            )
            session.add(record)
            session.flush()

            logger.info(f"Created alert: {alert.alert_type.value} - {alert.message}")
            return record.id

    def get_unresolved_alerts(self, batch_id: Optional[int] = None, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get unresolved alerts, warnings first, then newest first.

        Args:
            batch_id: Restrict to one batch (all batches if None)
            limit: Maximum number to return

        Returns:
            List of alert dictionaries
        """
        with self.session() as session:
            query = session.query(DBAlert).filter(DBAlert.resolved == False)  # noqa: E712
            if batch_id is not None:
                query = query.filter(DBAlert.batch_id == batch_id)
            alerts = (
                query.order_by(
                    desc(DBAlert.severity == AlertSeverity.WARNING),
                    desc(DBAlert.created_date),
                )
                .limit(limit)
                .all()
            )

            return [
                {
                    "id": a.id,
                    "batch_id": a.batch_id,
                    "alert_type": a.alert_type.value,
                    "severity": a.severity.value,
                    "message": a.message,
                    "created_date": _aware(a.created_date),
                    "acknowledged": a.acknowledged,
                }
                for a in alerts
            ]

    def acknowledge_alert(self, alert_id: int) -> bool:
        """
        Acknowledge an alert.

        Returns:
            True if successful
        """
        with self.session() as session:
            alert = session.get(DBAlert, alert_id)
            if alert:
                alert.acknowledged = True
                alert.acknowledged_date = _naive(utcnow())
                return True
            return False

    def resolve_alert(self, alert_id: int) -> bool:
        """
        Resolve an alert, acknowledging it first if needed.

        Returns:
            True if successful
        """
        with self.session() as session:
            alert = session.get(DBAlert, alert_id)
            if alert:
                stamp = _naive(utcnow())
                if not alert.acknowledged:
                    alert.acknowledged = True
                    alert.acknowledged_date = stamp
                alert.resolved = True
                alert.resolved_date = stamp
                return True
            return False

    # =========================================================================
    # Phase Status
    # =========================================================================

    def evaluation_context(self, batch_id: int) -> EvaluationContext:
        """
        Gravity context for a batch.

        Latest gravity is the newest non-excluded reading. Original gravity
        falls back to the oldest non-excluded reading when the batch has none.
        """
        with self.session() as session:
            batch = self._require_batch(session, batch_id)
            clean = session.query(DBReading.gravity).filter(
                DBReading.batch_id == batch_id,
                DBReading.is_excluded == False,  # noqa: E712
            )
            latest = clean.order_by(desc(DBReading.recorded_at), desc(DBReading.id)).first()
            original = batch.original_gravity
            if original is None:
                first = clean.order_by(DBReading.recorded_at, DBReading.id).first()
                original = first[0] if first else None

            return EvaluationContext(
                latest_gravity=latest[0] if latest else None,
                original_gravity=original,
                expected_final_gravity=self.config.analysis.expected_final_gravity,
            )

    def get_phase_status(
        self,
        batch_id: int,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[Phase], Optional[PhaseEvaluation]]:
        """
        Evaluate the active phase against the recent feed.

        Returns:
            (active phase, evaluation), or (None, None) when no phase is active
        """
        phase = self.get_current_phase(batch_id)
        if phase is None:
            return None, None

        entries = self.get_entry_feed(batch_id, limit=self.config.timeline.status_feed_limit)
        evaluation = evaluate_phase(
            phase,
            self.get_actions(phase.id),
            entries,
            context=self.evaluation_context(batch_id),
            now=now,
        )
        return phase, evaluation

    # =========================================================================
    # Cleanup
    # =========================================================================

    def get_cleanup_review(self, batch_id: int) -> CleanupReview:
        """Every reading (excluded included) with suggested outlier flags."""
        batch = self.get_batch(batch_id)
        readings = self.get_readings(batch_id, include_excluded=True)
        detection = detect_outliers(readings, self.config.analysis.outlier_options())
        return CleanupReview(
            readings=readings,
            detection=detection,
            trim_start=batch.trim_start,
            trim_end=batch.trim_end,
        )

    def apply_cleanup(
        self,
        batch_id: int,
        exclude: Optional[Dict[int, ExcludeReason]] = None,
        include_ids: Iterable[int] = (),
        trim_start: Optional[datetime] = None,
        trim_end: Optional[datetime] = None,
    ) -> List[date]:
        """
        Apply confirmed exclusions, inclusions and trim boundaries.

        Recaps for every local date whose readings changed are deleted so
        the next timeline load rebuilds them; other recaps are untouched.
        Original and final gravity are refreshed from the clean readings.

        Args:
            batch_id: Batch to clean up
            exclude: Reading ID -> reason to exclude
            include_ids: Reading IDs to restore
            trim_start: Exclude readings before this time (None keeps the current boundary)
            trim_end: Exclude readings after this time (None keeps the current boundary)

        Returns:
            Local dates whose recaps were invalidated, ascending
        """
        exclude = exclude or {}
        include_ids = set(include_ids)
        zone = resolve_timezone(self.timezone)

        with self.session() as session:
            batch = self._require_batch(session, batch_id)
            readings = (
                session.query(DBReading)
                .filter(DBReading.batch_id == batch_id)
                .order_by(DBReading.recorded_at, DBReading.id)
                .all()
            )

            trim_changed = trim_start is not None or trim_end is not None
            if trim_start is not None:
                batch.trim_start = _naive(trim_start)
            if trim_end is not None:
                batch.trim_end = _naive(trim_end)

            affected: Set[date] = set()
            for reading in readings:
                before = (reading.is_excluded, reading.exclude_reason)

                if reading.id in exclude:
                    reading.is_excluded = True
                    reading.exclude_reason = exclude[reading.id]
                elif reading.id in include_ids:
                    reading.is_excluded = False
                    reading.exclude_reason = ExcludeReason.NONE

                if trim_changed:
                    self._apply_trim(batch, reading)

                if (reading.is_excluded, reading.exclude_reason) != before:
                    affected.add(local_date(reading.recorded_at, zone))

            if affected:
                deleted = (
                    session.query(DBDailyRecap)
                    .filter(
                        DBDailyRecap.batch_id == batch_id,
                        DBDailyRecap.recap_date.in_(sorted(affected)),
                    )
                    .delete(synchronize_session=False)
                )
                logger.info(f"Invalidated {deleted} recaps for batch {batch_id} after cleanup")

            clean = [r for r in readings if not r.is_excluded]
            if clean:
                if batch.original_gravity != clean[0].gravity:
                    logger.info(
                        f"Original gravity for batch {batch_id} updated "
                        f"{batch.original_gravity} -> {clean[0].gravity}"
                    )
                batch.original_gravity = clean[0].gravity
                batch.final_gravity = clean[-1].gravity

        return sorted(affected)

    @staticmethod
    def _apply_trim(batch: DBBatch, reading: DBReading) -> None:
        if batch.trim_start is not None and reading.recorded_at < batch.trim_start:
            if not reading.is_excluded:
                reading.is_excluded = True
                reading.exclude_reason = ExcludeReason.HEAD_TRIM
        elif batch.trim_end is not None and reading.recorded_at > batch.trim_end:
            if not reading.is_excluded:
                reading.is_excluded = True
                reading.exclude_reason = ExcludeReason.TAIL_TRIM
        elif reading.exclude_reason in _TRIM_REASONS:
            reading.is_excluded = False
            reading.exclude_reason = ExcludeReason.NONE

    # =========================================================================
    # Recaps (RecapStore)
    # =========================================================================

    def batch_created_at(self, batch_id: int) -> Optional[datetime]:
        with self.session() as session:
            batch = session.get(DBBatch, batch_id)
            return _aware(batch.created_at) if batch is not None else None

    def reading_dates(self, batch_id: int, zone: tzinfo) -> List[date]:
        with self.session() as session:
            rows = (
                session.query(DBReading.recorded_at)
                .filter(DBReading.batch_id == batch_id, DBReading.is_excluded == False)  # noqa: E712
                .all()
            )
            return sorted({local_date(row[0], zone) for row in rows})

    def recapped_dates(self, batch_id: int) -> Set[date]:
        with self.session() as session:
            rows = (
                session.query(DBDailyRecap.recap_date)
                .filter(DBDailyRecap.batch_id == batch_id)
                .all()
            )
            return {row[0] for row in rows}

    def readings_for_date(self, batch_id: int, day: date, zone: tzinfo) -> List[Reading]:
        start = _naive(start_of_local_date(day, zone))
        end = _naive(start_of_local_date(day + timedelta(days=1), zone))
        with self.session() as session:
            readings = (
                session.query(DBReading)
                .filter(
                    DBReading.batch_id == batch_id,
                    DBReading.is_excluded == False,  # noqa: E712
                    DBReading.recorded_at >= start,
                    DBReading.recorded_at < end,
                )
                .order_by(DBReading.recorded_at, DBReading.id)
                .all()
            )
            return [self._map_reading(r) for r in readings]

    def insert_recap_if_absent(self, recap: DailyRecap) -> bool:
        """
        Insert a recap; a unique-constraint violation means another writer won.

        Sessions share one SQLite connection, so only the SAVEPOINT around
        the insert is rolled back on conflict.
        """
        with self.session() as session:
            record = DBDailyRecap(
                batch_id=recap.batch_id,
                recap_date=recap.recap_date,
                timestamp=_naive(recap.timestamp),
                opening_gravity=recap.opening_gravity,
                closing_gravity=recap.closing_gravity,
                gravity_delta=recap.gravity_delta,
                avg_temperature=recap.avg_temperature,
                temp_min=recap.temp_range.min if recap.temp_range else None,
                temp_max=recap.temp_range.max if recap.temp_range else None,
                temp_unit=recap.temp_unit,
                reading_count=recap.reading_count,
                day_number=recap.day_number,
            )
            try:
                with session.begin_nested():
                    session.add(record)
            except IntegrityError:
                logger.info(f"Recap for batch {recap.batch_id} on {recap.recap_date} already stored")
                return False
            return True

    def get_recaps(self, batch_id: int) -> List[DailyRecap]:
        """Stored recaps, newest date first."""
        with self.session() as session:
            recaps = (
                session.query(DBDailyRecap)
                .filter(DBDailyRecap.batch_id == batch_id)
                .order_by(desc(DBDailyRecap.recap_date))
                .all()
            )
            return [self._map_recap(r) for r in recaps]

    def generate_recaps(self, batch_id: int, now: Optional[datetime] = None) -> int:
        """Generate every missing recap except today's. Returns the number created."""
        self.get_batch(batch_id)
        return generate_missing_recaps(self, batch_id, timezone=self.timezone, now=now)

    # =========================================================================
    # Timeline
    # =========================================================================

    def load_timeline(self, batch_id: int, now: Optional[datetime] = None) -> List[TimelineItem]:
        """
        Build the batch timeline, newest first.

        Missing recaps are generated first; readings on dates still without
        a recap (always including today) are consolidated for display.
        """
        created = self.generate_recaps(batch_id, now=now)
        if created:
            logger.debug(f"Generated {created} recaps while loading timeline for batch {batch_id}")

        recaps = self.get_recaps(batch_id)
        consolidated = consolidate_readings(
            self.get_readings(batch_id),
            {r.recap_date for r in recaps},
            timezone=self.timezone,
            recent_count=self.config.timeline.recent_raw_readings,
        )
        return merge_timeline(self.get_entries(batch_id), recaps, consolidated)

    # =========================================================================
    # Mapping
    # =========================================================================

    def _map_batch(self, record: DBBatch) -> Batch:
        return Batch(
            id=record.id,
            name=record.name,
            style=record.style,
            status=record.status,
            original_gravity=record.original_gravity,
            final_gravity=record.final_gravity,
            current_phase_id=record.current_phase_id,
            trim_start=_aware(record.trim_start),
            trim_end=_aware(record.trim_end),
            created_at=_aware(record.created_at),
        )

    def _map_phase(self, record: DBPhase) -> Phase:
        criteria = None
        if record.completion_criteria:
            try:
                criteria = _CRITERIA.validate_python(record.completion_criteria)
            except ValidationError as e:
                logger.warning(f"Ignoring invalid completion criteria on phase {record.id}: {e}")

        return Phase(
            id=record.id,
            batch_id=record.batch_id,
            name=record.name,
            sort_order=record.sort_order,
            status=record.status,
            started_at=_aware(record.started_at),
            completed_at=_aware(record.completed_at),
            expected_duration_days=record.expected_duration_days,
            target_temp_low=record.target_temp_low,
            target_temp_high=record.target_temp_high,
            target_temp_unit=record.target_temp_unit,
            completion_criteria=criteria,
            notes=record.notes,
        )

    def _map_action(self, record: DBPhaseAction) -> PhaseAction:
        return PhaseAction(
            id=record.id,
            phase_id=record.phase_id,
            name=record.name,
            sort_order=record.sort_order,
            interval_days=record.interval_days,
            due_at=_aware(record.due_at),
            last_completed_at=_aware(record.last_completed_at),
            trigger_gravity=record.trigger_gravity,
            trigger_attenuation_fraction=record.trigger_attenuation_fraction,
        )

    def _map_reading(self, record: DBReading) -> Reading:
        return Reading(
            id=record.id,
            batch_id=record.batch_id,
            gravity=record.gravity,
            temperature=record.temperature,
            temperature_unit=record.temperature_unit,
            recorded_at=_aware(record.recorded_at),
            is_excluded=record.is_excluded,
            exclude_reason=record.exclude_reason,
        )

    def _map_entry(self, record: DBTimelineEntry) -> TimelineEntry:
        return TimelineEntry(
            id=record.id,
            batch_id=record.batch_id,
            entry_type=record.entry_type,
            source=record.source,
            data=record.data or {},
            created_at=_aware(record.created_at),
        )

    def _map_recap(self, record: DBDailyRecap) -> DailyRecap:
        temp_range = None
        if record.temp_min is not None and record.temp_max is not None:
            temp_range = TemperatureRange(min=record.temp_min, max=record.temp_max)
        return DailyRecap(
            id=record.id,
            batch_id=record.batch_id,
            recap_date=record.recap_date,
            timestamp=_aware(record.timestamp),
            opening_gravity=record.opening_gravity,
            closing_gravity=record.closing_gravity,
            gravity_delta=record.gravity_delta,
            avg_temperature=record.avg_temperature,
            temp_range=temp_range,
            temp_unit=record.temp_unit,
            reading_count=record.reading_count,
            day_number=record.day_number,
        )

    # =========================================================================
    # Utility
    # =========================================================================

    def close(self) -> None:
        """Close the database connection."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database connection closed")

    def get_record_count(self) -> Dict[str, int]:
        """Get count of records in main tables."""
        with self.session() as session:
            return {
                "batches": session.query(func.count(DBBatch.id)).scalar() or 0,
                "readings": session.query(func.count(DBReading.id)).scalar() or 0,
                "phases": session.query(func.count(DBPhase.id)).scalar() or 0,
                "entries": session.query(func.count(DBTimelineEntry.id)).scalar() or 0,
                "recaps": session.query(func.count(DBDailyRecap.id)).scalar() or 0,
                "alerts": session.query(func.count(DBAlert.id)).scalar() or 0,
            }

