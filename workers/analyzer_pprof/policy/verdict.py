"""
Verdict — severity and confidence vocabulary plus the pure functions that
derive them.

Detectors never hard-code a severity or confidence inline; they call one
of the functions below so the mapping tables can be tested directly.

Policy rules reference the AnalysisProfile for thresholds but never import
core/.
"""
from dataclasses import dataclass
from enum import Enum, unique

from analyzer_pprof.policy.profile import AnalysisProfile


# ── Severity ──────────────────────────────────────────────────────────────────

@unique
class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ── Confidence ────────────────────────────────────────────────────────────────

@unique
class Confidence(str, Enum):
    POSSIBLE = "possible"
    SUSPECTED = "suspected"
    LIKELY = "likely"
    CONFIRMED = "confirmed"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_ORDER.index(self)


_CONFIDENCE_ORDER = (
    Confidence.POSSIBLE,
    Confidence.SUSPECTED,
    Confidence.LIKELY,
    Confidence.CONFIRMED,
)


def upgrade_confidence(current: Confidence, proposed: Confidence) -> Confidence:
    """Return the stronger of the two; confidence is never downgraded."""
    if Confidence(proposed).rank > Confidence(current).rank:
        return Confidence(proposed)
    return Confidence(current)


# ── Percentage → severity ─────────────────────────────────────────────────────

def severity_for_percentage(pct: float, profile: AnalysisProfile) -> Severity:
    """``<5`` low, ``5–15`` medium, ``≥15`` high (with v0 thresholds)."""
    if pct >= profile.severity_high_pct:
        return Severity.HIGH
    if pct >= profile.severity_medium_pct:
        return Severity.MEDIUM
    return Severity.LOW


def is_high_churn(alloc_mb: float, inuse_mb: float, profile: AnalysisProfile) -> bool:
    """Lots allocated, little retained: memory is cycling quickly."""
    return alloc_mb > profile.churn_alloc_mb and inuse_mb < profile.churn_inuse_mb


# ── Off-heap evidence → tier ─────────────────────────────────────────────────

@dataclass(frozen=True)
class OffHeapTier:
    level: int
    confidence: Confidence
    severity: Severity


def offheap_tier(
    alloc_in_heap: bool,
    alloc_in_cpu: bool,
    native_ops: bool,
    high_churn: bool,
) -> OffHeapTier:
    """
    Grade native-allocator evidence.  First satisfied tier wins.

      1. allocator frames in heap AND cpu stacks, plus churn → confirmed / high
      2. allocator frames in cpu stacks                      → likely / high
      3. allocator or memory-op frames, plus churn          → likely / high
      4. churn alone                                          → suspected / medium
      5. anything else                                        → possible / low
    """
    if alloc_in_heap and alloc_in_cpu and high_churn:
        return OffHeapTier(1, Confidence.CONFIRMED, Severity.HIGH)
    if alloc_in_cpu:
        return OffHeapTier(2, Confidence.LIKELY, Severity.HIGH)
    if (alloc_in_heap or native_ops) and high_churn:
        return OffHeapTier(3, Confidence.LIKELY, Severity.HIGH)
    if high_churn:
        return OffHeapTier(4, Confidence.SUSPECTED, Severity.MEDIUM)
    return OffHeapTier(5, Confidence.POSSIBLE, Severity.LOW)


def goroutine_stack_severity(count: int, profile: AnalysisProfile):
    """Severity for a goroutine population, or None below the medium floor."""
    if count > profile.goroutine_stack_high:
        return Severity.HIGH
    if count > profile.goroutine_stack_medium:
        return Severity.MEDIUM
    return None


def leak_severity(count: int, threshold: int):
    """
    ``count ≥ threshold`` high, ``count ≥ threshold // 2`` medium, else None.

    The medium cut-off uses integer halving, so an odd threshold rounds
    down: at threshold 7 a stack of 3 goroutines is already medium.
    Goroutine counts are integers, which makes this the same as comparing
    against ``floor(threshold / 2)``.
    """
    if count >= threshold:
        return Severity.HIGH
    if count >= threshold // 2:
        return Severity.MEDIUM
    return None
