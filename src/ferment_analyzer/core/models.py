"""
Pydantic data models for Ferment Analyzer.

Domain records handed to the analysis core (readings, phases, actions,
timeline entries) and the result records it returns (outlier flags, phase
evaluations, alerts, recaps, hourly summaries).
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from ferment_analyzer.utils.constants import DEFAULT_EXPECTED_FINAL_GRAVITY
from ferment_analyzer.utils.dates import ensure_utc


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# ============================================================================
# Enums
# ============================================================================

class TemperatureUnit(str, Enum):
    """Temperature scale of a reading or target range."""
    FAHRENHEIT = "F"
    CELSIUS = "C"


class ExcludeReason(str, Enum):
    """Why a reading is excluded from analysis."""
    HEAD_TRIM = "head_trim"
    TAIL_TRIM = "tail_trim"
    OUTLIER_AUTO = "outlier_auto"
    OUTLIER_MANUAL = "outlier_manual"
    NONE = "none"


class PhaseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class BatchStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class EntryType(str, Enum):
    """Kinds of persisted timeline entries."""
    READING = "reading"
    ADDITION = "addition"
    RACK = "rack"
    TASTE = "taste"
    PHASE_CHANGE = "phase_change"
    NOTE = "note"
    ALERT = "alert"


class AlertType(str, Enum):
    STUCK_FERMENTATION = "stuck_fermentation"
    TEMPERATURE = "temperature"
    CUSTOM = "custom"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"


# ============================================================================
# Base Model
# ============================================================================

class BaseFermentModel(BaseModel):
    """Base model with common configuration."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_default=True,
        populate_by_name=True,
    )


# ============================================================================
# Readings
# ============================================================================

class Reading(BaseFermentModel):
    """One hydrometer or manual gravity/temperature observation."""
    id: int = Field(..., description="Reading ID")
    batch_id: Optional[int] = Field(None, description="Owning batch (None while unlinked)")
    gravity: float = Field(..., description="Specific gravity")
    temperature: Optional[float] = Field(None, description="Temperature")
    temperature_unit: TemperatureUnit = Field(default=TemperatureUnit.FAHRENHEIT)
    recorded_at: UtcDatetime = Field(..., description="When the reading was taken")
    is_excluded: bool = Field(default=False)
    exclude_reason: ExcludeReason = Field(default=ExcludeReason.NONE)


# ============================================================================
# Completion Criteria (tagged union)
# ============================================================================

class CriteriaBase(BaseFermentModel):
    """Shared config: accepts the camelCase keys stored in protocol JSON."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GravityStableCriteria(CriteriaBase):
    """Last N readings (or every reading in a time window) within tolerance."""
    type: Literal["gravity_stable"] = "gravity_stable"
    consecutive_readings: int = Field(..., ge=1, alias="consecutiveReadings")
    tolerance_sg: float = Field(..., ge=0, alias="toleranceSG")
    stable_duration_hours: Optional[float] = Field(None, gt=0, alias="stableDurationHours")


class GravityReachedCriteria(CriteriaBase):
    """Absolute target gravity, or a fraction of the expected gravity drop."""
    type: Literal["gravity_reached"] = "gravity_reached"
    attenuation_fraction: Optional[float] = Field(None, gt=0, le=1, alias="attenuationFraction")
    target_gravity: Optional[float] = Field(None, gt=0, alias="targetGravity")


class DurationCriteria(CriteriaBase):
    type: Literal["duration"] = "duration"
    min_days: int = Field(..., ge=0, alias="minDays")


class ActionCountCriteria(CriteriaBase):
    type: Literal["action_count"] = "action_count"
    action_name: str = Field(..., min_length=1, alias="actionName")
    min_count: int = Field(..., ge=0, alias="minCount")


class ManualCriteria(CriteriaBase):
    type: Literal["manual"] = "manual"


class CompoundCriteria(CriteriaBase):
    """Logical AND over child criteria."""
    type: Literal["compound"] = "compound"
    criteria: List["CompletionCriteria"] = Field(default_factory=list)


CompletionCriteria = Annotated[
    Union[
        GravityStableCriteria,
        GravityReachedCriteria,
        DurationCriteria,
        ActionCountCriteria,
        ManualCriteria,
        CompoundCriteria,
    ],
    Field(discriminator="type"),
]

CompoundCriteria.model_rebuild()


# ============================================================================
# Phases and Actions
# ============================================================================

class Phase(BaseFermentModel):
    """One stage of a batch protocol."""
    id: int
    batch_id: Optional[int] = None
    name: str
    sort_order: int = 0
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: Optional[UtcDatetime] = None
    completed_at: Optional[UtcDatetime] = None
    expected_duration_days: Optional[int] = Field(None, ge=0)
    target_temp_low: Optional[float] = None
    target_temp_high: Optional[float] = None
    target_temp_unit: Optional[TemperatureUnit] = None
    completion_criteria: Optional[CompletionCriteria] = None
    notes: Optional[str] = None

    @property
    def has_temperature_target(self) -> bool:
        return self.target_temp_low is not None and self.target_temp_high is not None


class PhaseAction(BaseFermentModel):
    """
    A task attached to a phase.

    Scheduling is one of: recurring (interval_days, measured from
    last_completed_at), fixed (due_at), or gravity-triggered
    (trigger_gravity / trigger_attenuation_fraction). An action with none of
    these is undated.
    """
    id: int
    phase_id: Optional[int] = None
    name: str
    sort_order: int = 0
    interval_days: Optional[float] = Field(None, gt=0)
    due_at: Optional[UtcDatetime] = None
    last_completed_at: Optional[UtcDatetime] = None
    trigger_gravity: Optional[float] = Field(None, gt=0)
    trigger_attenuation_fraction: Optional[float] = Field(None, gt=0, le=1)

    @property
    def is_gravity_triggered(self) -> bool:
        return self.trigger_gravity is not None or self.trigger_attenuation_fraction is not None


# ============================================================================
# Protocol Templates
# ============================================================================

class PhaseTemplate(BaseFermentModel):
    """Blueprint for one phase of a standard protocol."""
    slug: str
    name: str
    description: str = ""
    optional: bool = False
    expected_duration_days: Optional[int] = Field(None, ge=0)
    target_temp_low: Optional[float] = None
    target_temp_high: Optional[float] = None
    target_temp_unit: Optional[TemperatureUnit] = None
    completion_criteria: CompletionCriteria
    allowed_criteria_types: List[str] = Field(
        default_factory=list,
        description="Criteria kinds a user may swap in; empty means fixed",
    )


class ProtocolTemplate(BaseFermentModel):
    """Ordered phase blueprints for a style of batch."""
    key: str
    name: str
    category: str = "wine"
    phases: List[PhaseTemplate] = Field(default_factory=list)

    @property
    def optional_slugs(self) -> List[str]:
        return [p.slug for p in self.phases if p.optional]


# ============================================================================
# Timeline
# ============================================================================

class TimelineEntry(BaseFermentModel):
    """
    A timeline entry as stored by the persistence layer.

    Readings pulled from the reading store are projected into this shape
    (see ``from_reading``) so that evaluators can consume one feed; those
    projections have no timeline ``id``.
    """
    is_persisted: ClassVar[bool] = True

    kind: Literal["entry"] = "entry"
    id: Optional[int] = None
    batch_id: Optional[int] = None
    entry_type: EntryType
    source: str = "manual"
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime

    @property
    def timestamp(self) -> datetime:
        return self.created_at

    @property
    def is_reading(self) -> bool:
        return self.entry_type == EntryType.READING

    @property
    def gravity(self) -> Optional[float]:
        return self._number("gravity") if self.is_reading else None

    @property
    def temperature(self) -> Optional[float]:
        return self._number("temperature") if self.is_reading else None

    def _number(self, key: str) -> Optional[float]:
        value = self.data.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    @classmethod
    def from_reading(cls, reading: Reading, source: str = "hydrometer") -> "TimelineEntry":
        return cls(
            batch_id=reading.batch_id,
            entry_type=EntryType.READING,
            source=source,
            data={
                "type": "reading",
                "reading_id": reading.id,
                "gravity": reading.gravity,
                "temperature": reading.temperature,
                "temperatureUnit": reading.temperature_unit.value,
            },
            created_at=reading.recorded_at,
        )


class TemperatureRange(BaseFermentModel):
    min: float
    max: float


class DailyRecap(BaseFermentModel):
    """Durable one-per-date summary of a batch's readings."""
    is_persisted: ClassVar[bool] = True

    kind: Literal["daily_recap"] = "daily_recap"
    id: Optional[int] = None
    batch_id: int
    recap_date: date
    timestamp: UtcDatetime = Field(..., description="End of the recap date, in UTC")
    opening_gravity: float
    closing_gravity: float
    gravity_delta: float
    avg_temperature: Optional[float] = None
    temp_range: Optional[TemperatureRange] = None
    temp_unit: TemperatureUnit = TemperatureUnit.FAHRENHEIT
    reading_count: int = Field(..., ge=1)
    day_number: int


class HourlySummary(BaseFermentModel):
    """Display-only summary of one clock hour of unrecapped readings."""
    is_persisted: ClassVar[bool] = False

    kind: Literal["hourly_summary"] = "hourly_summary"
    hour_start: UtcDatetime
    hour_label: str
    timestamp: UtcDatetime = Field(..., description="Time of the last reading in the hour")
    start_gravity: float
    end_gravity: float
    gravity_delta: float
    avg_temperature: Optional[float] = None
    temp_range: Optional[TemperatureRange] = None
    temp_unit: TemperatureUnit = TemperatureUnit.FAHRENHEIT
    reading_count: int = Field(..., ge=1)


class ReadingSnapshot(BaseFermentModel):
    """Display-only view of one recent, not yet recapped reading."""
    is_persisted: ClassVar[bool] = False

    kind: Literal["reading_snapshot"] = "reading_snapshot"
    reading_id: int
    timestamp: UtcDatetime
    gravity: float
    temperature: Optional[float] = None
    temperature_unit: TemperatureUnit = TemperatureUnit.FAHRENHEIT


TimelineItem = Union[TimelineEntry, DailyRecap, HourlySummary, ReadingSnapshot]


# ============================================================================
# Outlier Detection
# ============================================================================

class OutlierOptions(BaseFermentModel):
    """Tuning parameters for outlier detection."""
    window_size: int = Field(default=7, ge=1)
    mid_log_threshold: float = Field(default=0.010, gt=0)
    small_dataset_threshold: float = Field(default=0.020, gt=0)
    head_tail_check_size: int = Field(default=5, ge=0)
    head_tail_ref_size: int = Field(default=8, ge=1)


class OutlierFlag(BaseFermentModel):
    reading_id: int
    gravity: float
    recorded_at: UtcDatetime
    deviation: float = Field(..., description="Absolute SG distance from the reference median")
    reason: ExcludeReason


class OutlierDetectionResult(BaseFermentModel):
    head_outliers: List[OutlierFlag] = Field(default_factory=list)
    tail_outliers: List[OutlierFlag] = Field(default_factory=list)
    mid_log_outliers: List[OutlierFlag] = Field(default_factory=list)
    clean_range_start: Optional[UtcDatetime] = None
    clean_range_end: Optional[UtcDatetime] = None
    total_flagged: int = 0

    @property
    def all_flags(self) -> List[OutlierFlag]:
        return self.head_outliers + self.tail_outliers + self.mid_log_outliers

    @property
    def flagged_ids(self) -> List[int]:
        return [flag.reading_id for flag in self.all_flags]


# ============================================================================
# Phase Evaluation
# ============================================================================

class EvaluationContext(BaseFermentModel):
    """Gravity context for gravity-target criteria and gravity-triggered actions."""
    latest_gravity: Optional[float] = None
    original_gravity: Optional[float] = None
    expected_final_gravity: float = DEFAULT_EXPECTED_FINAL_GRAVITY


class CriteriaResult(BaseFermentModel):
    met: bool
    details: str


class PhaseEvaluation(BaseFermentModel):
    criteria_met: bool
    criteria_details: str
    overdue_actions: List[PhaseAction] = Field(default_factory=list)
    next_actions: List[PhaseAction] = Field(default_factory=list)
    days_in_phase: int = 0


# ============================================================================
# Alerts
# ============================================================================

class Alert(BaseFermentModel):
    alert_type: AlertType
    severity: AlertSeverity
    message: str


# ============================================================================
# Batch records (persistence boundary)
# ============================================================================

class Batch(BaseFermentModel):
    id: int
    name: str
    style: Optional[str] = None
    status: BatchStatus = BatchStatus.ACTIVE
    original_gravity: Optional[float] = None
    final_gravity: Optional[float] = None
    current_phase_id: Optional[int] = None
    trim_start: Optional[UtcDatetime] = None
    trim_end: Optional[UtcDatetime] = None
    created_at: UtcDatetime


class PhaseTransition(BaseFermentModel):
    """Outcome of advancing or skipping a batch's active phase."""
    from_phase: Optional[Phase] = None
    to_phase: Optional[Phase] = None
    skipped: bool = False

    @property
    def protocol_complete(self) -> bool:
        return self.to_phase is None


class CleanupReview(BaseFermentModel):
    """Everything a human needs to confirm or reject suggested exclusions."""
    readings: List[Reading] = Field(default_factory=list)
    detection: OutlierDetectionResult
    trim_start: Optional[UtcDatetime] = None
    trim_end: Optional[UtcDatetime] = None
