from .common import CoverageInterval, FillRecord, TreatmentPeriod
from .domain import (
    ActiveTier,
    AdherenceConfig,
    Compliant,
    CoverageResult,
    EvaluationReceipt,
    GapBudget,
    InsufficientHistory,
    MeasureAggregate,
    MeasureFailure,
    MeasureResult,
    MedicationFailure,
    MedicationResult,
    NoActivePriority,
    PatientAggregate,
    PatientEvaluation,
    PriorityBonuses,
    PriorityOutcome,
    PriorityResult,
    Projection,
    Scored,
    ScopeResult,
    SupplyState,
    TierAssessment,
    Unsalvageable,
    Urgent,
    Warning,
    priority_score,
)
from .enums import (
    ACTIVE_TIERS,
    CONTACT_WINDOWS,
    TIER_ACTIONS,
    TIER_SEVERITY,
    AggregateStatus,
    FillStatus,
    FragilityTier,
    MAMeasure,
    PriorityQueue,
    ResultScope,
)
