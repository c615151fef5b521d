"""
SQLAlchemy database models for Ferment Analyzer.

Tables:
- Batch: One fermentation (wine/beer/mead) and its gravity bookkeeping
- Phase: Ordered protocol stages of a batch
- PhaseAction: Tasks attached to a phase
- Reading: Gravity/temperature observations, with exclusion flags
- TimelineEntry: User and system events (additions, notes, phase changes, alerts)
- DailyRecap: One durable summary per batch per calendar date
- Alert: Alert records with acknowledgement/resolution tracking

All datetimes are stored as naive UTC.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Date,
    DateTime, Text, ForeignKey, Index, UniqueConstraint,
    Enum, JSON, CheckConstraint,
)
from sqlalchemy.orm import declarative_base, relationship, validates

from ferment_analyzer.core.models import (
    AlertSeverity,
    AlertType,
    BatchStatus,
    EntryType,
    ExcludeReason,
    PhaseStatus,
    TemperatureUnit,
)


def _enum(enum_cls):
    """Store enum values ("F", "head_trim") rather than member names."""
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        validate_strings=True,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Create base class for all models
Base = declarative_base()


class Batch(Base):
    """
    A single fermentation batch.

    ``current_phase_id`` points at the one active phase, or is NULL before
    the protocol starts and after it finishes.
    """
    __tablename__ = 'batches'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    style = Column(String(100))
    status = Column(_enum(BatchStatus), default=BatchStatus.ACTIVE, nullable=False)

    # Gravity bookkeeping
    original_gravity = Column(Float)
    final_gravity = Column(Float)

    current_phase_id = Column(Integer)

    # Cleanup trim boundaries
    trim_start = Column(DateTime)
    trim_end = Column(DateTime)

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    phases = relationship(
        "Phase",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="Phase.sort_order",
        lazy="select",
    )
    readings = relationship(
        "Reading",
        back_populates="batch",
        cascade="all, delete-orphan",
        lazy="select",
    )

    __table_args__ = (
        Index('idx_batch_status', 'status'),
        CheckConstraint("LENGTH(TRIM(name)) > 0", name='check_batch_name_not_empty'),
        CheckConstraint("original_gravity IS NULL OR original_gravity > 0", name='check_og_positive'),
        CheckConstraint("final_gravity IS NULL OR final_gravity > 0", name='check_fg_positive'),
    )

    @validates('name')
    def validate_name(self, key, name):
        """Validate name is not empty."""
        if not name or not name.strip():
            raise ValueError("Batch name cannot be empty")
        return name.strip()

    def __repr__(self):
        return f"<Batch(id={self.id}, name='{self.name}', status='{self.status}')>"


class Phase(Base):
    """
    One stage of a batch protocol.

    ``completion_criteria`` holds the criteria tree as JSON (camelCase keys,
    as protocol templates write them).
    """
    __tablename__ = 'batch_phases'

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=False)

    name = Column(String(100), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    status = Column(_enum(PhaseStatus), default=PhaseStatus.PENDING, nullable=False)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    expected_duration_days = Column(Integer)

    target_temp_low = Column(Float)
    target_temp_high = Column(Float)
    target_temp_unit = Column(_enum(TemperatureUnit))

    completion_criteria = Column(JSON)
    notes = Column(Text)

    batch = relationship("Batch", back_populates="phases")
    actions = relationship(
        "PhaseAction",
        back_populates="phase",
        cascade="all, delete-orphan",
        order_by="PhaseAction.sort_order",
        lazy="select",
    )

    __table_args__ = (
        Index('idx_phase_batch_status', 'batch_id', 'status'),
        UniqueConstraint('batch_id', 'sort_order', name='uq_phase_order'),
        CheckConstraint("LENGTH(TRIM(name)) > 0", name='check_phase_name_not_empty'),
        CheckConstraint(
            "target_temp_low IS NULL OR target_temp_high IS NULL OR target_temp_low <= target_temp_high",
            name='check_temp_band_ordered',
        ),
    )

    @validates('name')
    def validate_name(self, key, name):
        if not name or not name.strip():
            raise ValueError("Phase name cannot be empty")
        return name.strip()

    def __repr__(self):
        return f"<Phase(id={self.id}, batch_id={self.batch_id}, name='{self.name}', status='{self.status}')>"


class PhaseAction(Base):
    """Task attached to a phase (recurring, fixed-date or gravity-triggered)."""
    __tablename__ = 'phase_actions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    phase_id = Column(Integer, ForeignKey('batch_phases.id'), nullable=False)

    name = Column(String(100), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)

    interval_days = Column(Float)
    due_at = Column(DateTime)
    last_completed_at = Column(DateTime)
    trigger_gravity = Column(Float)
    trigger_attenuation_fraction = Column(Float)

    phase = relationship("Phase", back_populates="actions")

    __table_args__ = (
        Index('idx_action_phase', 'phase_id'),
        CheckConstraint("LENGTH(TRIM(name)) > 0", name='check_action_name_not_empty'),
        CheckConstraint("interval_days IS NULL OR interval_days > 0", name='check_interval_positive'),
        CheckConstraint(
            "trigger_attenuation_fraction IS NULL OR "
            "(trigger_attenuation_fraction > 0 AND trigger_attenuation_fraction <= 1)",
            name='check_trigger_fraction_range',
        ),
    )

    @validates('name')
    def validate_name(self, key, name):
        if not name or not name.strip():
            raise ValueError("Action name cannot be empty")
        return name.strip()

    def __repr__(self):
        return f"<PhaseAction(id={self.id}, phase_id={self.phase_id}, name='{self.name}')>"


class Reading(Base):
    """
    Gravity/temperature observation.

    Excluded readings stay in the table so a cleanup can be undone; every
    analysis query filters on ``is_excluded``.
    """
    __tablename__ = 'readings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=False)

    gravity = Column(Float, nullable=False)
    temperature = Column(Float)
    temperature_unit = Column(_enum(TemperatureUnit), default=TemperatureUnit.FAHRENHEIT, nullable=False)
    recorded_at = Column(DateTime, nullable=False)
    source = Column(String(20), default="manual", nullable=False)

    is_excluded = Column(Boolean, default=False, nullable=False)
    exclude_reason = Column(_enum(ExcludeReason), default=ExcludeReason.NONE, nullable=False)

    batch = relationship("Batch", back_populates="readings")

    __table_args__ = (
        Index('idx_reading_batch_time', 'batch_id', 'recorded_at'),
        Index('idx_reading_batch_excluded', 'batch_id', 'is_excluded'),
        CheckConstraint("gravity > 0", name='check_gravity_positive'),
    )

    @validates('gravity')
    def validate_gravity(self, key, gravity):
        """Validate gravity is positive."""
        if gravity is None or gravity <= 0:
            raise ValueError("Gravity must be positive")
        return gravity

    def __repr__(self):
        return f"<Reading(id={self.id}, batch_id={self.batch_id}, gravity={self.gravity}, recorded_at={self.recorded_at})>"


class TimelineEntry(Base):
    """User or system event on a batch timeline."""
    __tablename__ = 'timeline_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=False)

    entry_type = Column(_enum(EntryType), nullable=False)
    source = Column(String(20), default="manual", nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index('idx_entry_batch_time', 'batch_id', 'created_at'),
        Index('idx_entry_type', 'entry_type'),
    )

    def __repr__(self):
        return f"<TimelineEntry(id={self.id}, batch_id={self.batch_id}, type='{self.entry_type}')>"


class DailyRecap(Base):
    """
    One summary per batch per calendar date.

    The unique constraint on (batch_id, recap_date) is what makes
    concurrent recap generation safe.
    """
    __tablename__ = 'daily_recaps'

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=False)
    recap_date = Column(Date, nullable=False)
    timestamp = Column(DateTime, nullable=False)

    opening_gravity = Column(Float, nullable=False)
    closing_gravity = Column(Float, nullable=False)
    gravity_delta = Column(Float, nullable=False)

    avg_temperature = Column(Float)
    temp_min = Column(Float)
    temp_max = Column(Float)
    temp_unit = Column(_enum(TemperatureUnit), default=TemperatureUnit.FAHRENHEIT, nullable=False)

    reading_count = Column(Integer, nullable=False)
    day_number = Column(Integer, nullable=False)
    created_date = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('batch_id', 'recap_date', name='uq_recap_batch_date'),
        Index('idx_recap_batch', 'batch_id'),
        CheckConstraint("reading_count >= 1", name='check_recap_has_readings'),
        CheckConstraint(
            "(temp_min IS NULL AND temp_max IS NULL) OR temp_min <= temp_max",
            name='check_recap_temp_range',
        ),
    )

    def __repr__(self):
        return f"<DailyRecap(id={self.id}, batch_id={self.batch_id}, date={self.recap_date})>"


class Alert(Base):
    """
    Alert raised by the detector during reading ingest.

    Tracks acknowledgement and resolution; an unresolved alert of the same
    type suppresses repeats for a while.
    """
    __tablename__ = 'alerts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_id = Column(Integer, ForeignKey('batches.id'), nullable=False)
    timeline_entry_id = Column(Integer, ForeignKey('timeline_entries.id'))

    alert_type = Column(_enum(AlertType), nullable=False)
    severity = Column(_enum(AlertSeverity), nullable=False)
    message = Column(Text, nullable=False)
    created_date = Column(DateTime, default=_utcnow, nullable=False)

    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_date = Column(DateTime)
    resolved = Column(Boolean, default=False, nullable=False)
    resolved_date = Column(DateTime)

    __table_args__ = (
        Index('idx_alert_batch_type_date', 'batch_id', 'alert_type', 'created_date'),
        Index('idx_alert_resolved', 'resolved'),
        CheckConstraint("LENGTH(TRIM(message)) > 0", name='check_alert_message_not_empty'),
        CheckConstraint("acknowledged_date IS NULL OR acknowledged = 1", name='check_acknowledged_consistency'),
        CheckConstraint("resolved_date IS NULL OR resolved = 1", name='check_resolved_consistency'),
    )

    @validates('message')
    def validate_message(self, key, message):
        """Validate message is not empty."""
        if not message or not message.strip():
            raise ValueError("Alert message cannot be empty")
        return message.strip()

    def __repr__(self):
        return f"<Alert(id={self.id}, batch_id={self.batch_id}, type='{self.alert_type}', resolved={self.resolved})>"
