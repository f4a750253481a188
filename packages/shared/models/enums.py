from enum import Enum


class MAMeasure(str, Enum):
    MAC = "MAC"  # Statins (cholesterol)
    MAD = "MAD"  # Oral diabetes medications
    MAH = "MAH"  # RAS antagonists (hypertension)


class FillStatus(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in-progress"
    CANCELLED = "cancelled"
    ENTERED_IN_ERROR = "entered-in-error"
    STOPPED = "stopped"
    DECLINED = "declined"
    UNKNOWN = "unknown"


class FragilityTier(str, Enum):
    F1_IMMINENT = "F1_IMMINENT"
    F2_FRAGILE = "F2_FRAGILE"
    F3_MODERATE = "F3_MODERATE"
    F4_COMFORTABLE = "F4_COMFORTABLE"
    F5_SAFE = "F5_SAFE"
    T5_UNSALVAGEABLE = "T5_UNSALVAGEABLE"
    COMPLIANT = "COMPLIANT"
    D1a_AT_RISK = "D1a_AT_RISK"  # Not yet in the HEDIS denominator


class PriorityQueue(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    WATCH = "WATCH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ResultScope(str, Enum):
    MEASURE = "measure"
    MEDICATION = "medication"


class AggregateStatus(str, Enum):
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    UNKNOWN = "unknown"


# Lower rank = more severe. D1a sits outside this order.
TIER_SEVERITY: dict[FragilityTier, int] = {
    FragilityTier.T5_UNSALVAGEABLE: 0,
    FragilityTier.F1_IMMINENT: 1,
    FragilityTier.F2_FRAGILE: 2,
    FragilityTier.F3_MODERATE: 3,
    FragilityTier.F4_COMFORTABLE: 4,
    FragilityTier.F5_SAFE: 5,
    FragilityTier.COMPLIANT: 6,
}

ACTIVE_TIERS = (
    FragilityTier.F1_IMMINENT,
    FragilityTier.F2_FRAGILE,
    FragilityTier.F3_MODERATE,
    FragilityTier.F4_COMFORTABLE,
    FragilityTier.F5_SAFE,
)

CONTACT_WINDOWS: dict[FragilityTier, str] = {
    FragilityTier.F1_IMMINENT: "24 hours",
    FragilityTier.F2_FRAGILE: "48 hours",
    FragilityTier.F3_MODERATE: "1 week",
    FragilityTier.F4_COMFORTABLE: "2 weeks",
    FragilityTier.F5_SAFE: "Monthly",
    FragilityTier.COMPLIANT: "Monitor only",
    FragilityTier.T5_UNSALVAGEABLE: "Special handling required",
    FragilityTier.D1a_AT_RISK: "Before next expected fill",
}

TIER_ACTIONS: dict[FragilityTier, str] = {
    FragilityTier.F1_IMMINENT: "Immediate outreach required",
    FragilityTier.F2_FRAGILE: "Urgent outreach recommended",
    FragilityTier.F3_MODERATE: "Standard outreach",
    FragilityTier.F4_COMFORTABLE: "Monitor and schedule",
    FragilityTier.F5_SAFE: "Routine monitoring",
    FragilityTier.COMPLIANT: "No action needed - monitor only",
    FragilityTier.T5_UNSALVAGEABLE: "Special handling - cannot reach 80%",
    FragilityTier.D1a_AT_RISK: "Second-fill outreach",
}
