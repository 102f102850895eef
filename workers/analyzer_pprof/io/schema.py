"""
Schema — Pydantic models for analyzer JSON outputs.

One report model per detector, plus the bundle wrapper:
  OverheadReport, MemoryReport, ContentionReport, GoroutineReport,
  CategorizeReport, TemporalReport, AllocPathsReport, CorrelationReport, MetaReport,
  HotspotReport, RegressionReport, BundleReport.

Runtime contract fields (present in every output):
  package_name, analyzer_version, schema_version, warnings.

No report carries a wall-clock field; only the profile's own
time/duration values pass through.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from analyzer_pprof import ANALYZER_VERSION, PACKAGE_NAME, SCHEMA_VERSION


class ReportBase(BaseModel):
    package_name: str = PACKAGE_NAME
    analyzer_version: str = ANALYZER_VERSION
    schema_version: str = SCHEMA_VERSION

    warnings: List[str] = Field(default_factory=list)


# ── Overhead ─────────────────────────────────────────────────────────────────

class OverheadDetection(BaseModel):
    category: str
    description: str
    value: int
    value_str: str
    percentage: float
    top_functions: List[str] = Field(default_factory=list)
    severity: str             # low | medium | high
    suggestion: Optional[str] = None


class OverheadReport(ReportBase):
    profile_kind: str
    sample_type: str = ""
    unit: str = ""
    total_value: int = 0
    total_value_str: str = ""
    detections: List[OverheadDetection] = Field(default_factory=list)
    total_overhead_pct: float = 0.0
    hints: List[str] = Field(default_factory=list)


# ── Off-heap memory ──────────────────────────────────────────────────────────

class Suspicion(BaseModel):
    category: str
    description: str
    severity: str             # low | medium | high
    confidence: str           # possible | suspected | likely | confirmed
    evidence: str = ""


class CodeFinding(BaseModel):
    """A source line that matches a known off-heap pattern."""
    category: str
    file: str                 # relative to the scanned root
    line: int
    pattern: str
    snippet: str = ""
    explanation: str
    is_vendor: bool = False


class MemoryReport(ReportBase):
    summary: str = ""
    heap_inuse_mb: float = 0.0
    heap_alloc_mb: float = 0.0
    goroutine_count: int = 0
    suspicions: List[Suspicion] = Field(default_factory=list)
    code_findings: List[CodeFinding] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# ── Contention ───────────────────────────────────────────────────────────────

class ContentionWaiter(BaseModel):
    function: str
    delay: int
    delay_str: str


class LockSite(BaseModel):
    key: str                  # lock_site@source_location, or lock_site
    lock_site: str
    source_location: str = ""
    contentions: int = 0
    total_delay: int = 0
    total_delay_str: str = ""
    avg_delay: int = 0
    avg_delay_str: str = ""
    top_waiters: List[ContentionWaiter] = Field(default_factory=list)


class ContentionPattern(BaseModel):
    type: str                 # hot_lock | lock_convoy | high_contention
    severity: str
    description: str


class ContentionReport(ReportBase):
    profile_type: str
    total_contentions: int = 0
    total_delay: int = 0
    total_delay_str: str = ""
    by_lock_site: List[LockSite] = Field(default_factory=list)
    patterns: List[ContentionPattern] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# ── Goroutines ───────────────────────────────────────────────────────────────

class WaitReasonEntry(BaseModel):
    reason: str
    count: int
    sample_stack: str = ""


class LeakCandidate(BaseModel):
    stack_signature: str
    count: int
    severity: str             # medium | high
    state: str = ""
    wait_reason: str = ""


class GoroutineReport(ReportBase):
    total_goroutines: int = 0
    by_state: Dict[str, int] = Field(default_factory=dict)
    top_wait_reasons: List[WaitReasonEntry] = Field(default_factory=list)
    potential_leaks: List[LeakCandidate] = Field(default_factory=list)


class GoroutineCategoryEntry(BaseModel):
    name: str
    pattern: str
    count: int
    percent: float
    sample_stack: str = ""


class UncategorizedStack(BaseModel):
    signature: str
    count: int


class CategorizeReport(ReportBase):
    total_goroutines: int = 0
    categories: List[GoroutineCategoryEntry] = Field(default_factory=list)
    uncategorized: int = 0
    top_uncategorized: List[UncategorizedStack] = Field(default_factory=list)
    presets_used: List[str] = Field(default_factory=list)


# ── Temporal SDK workers ─────────────────────────────────────────────────────

class TemporalCounts(BaseModel):
    """Raw goroutine counts per Temporal SDK role."""
    activity_pollers_do_poll: int = 0
    activity_pollers_in_grpc: int = 0
    workflow_pollers_do_poll: int = 0
    workflow_pollers_in_grpc: int = 0
    local_activity_pollers: int = 0
    activities_executing: int = 0
    workflows_cached: int = 0
    local_activities_executing: int = 0
    sessions_active: int = 0
    heartbeat_goroutines: int = 0
    grpc_streams: int = 0
    task_dispatchers: int = 0
    eager_dispatchers: int = 0


class TemporalInferredSettings(BaseModel):
    """Worker options as far as the goroutine population reveals them."""
    max_concurrent_activity_task_pollers: int = 0
    max_concurrent_workflow_task_pollers: int = 0
    # observed, not the configured maximum
    active_activities: int = 0
    cached_workflows: int = 0
    active_local_activities: int = 0
    active_sessions: int = 0
    notes: List[str] = Field(default_factory=list)


class TemporalWorkflowType(BaseModel):
    name: str
    count: int
    state: str                # selector | awaiting_future | executing | unknown
    sample_stack: str = ""


class TemporalActivityType(BaseModel):
    name: str
    count: int
    sample_stack: str = ""


class TemporalReport(ReportBase):
    total_goroutines: int = 0
    counts: TemporalCounts = Field(default_factory=TemporalCounts)
    inferred_settings: TemporalInferredSettings = Field(default_factory=TemporalInferredSettings)
    workflow_breakdown: List[TemporalWorkflowType] = Field(default_factory=list)
    activity_breakdown: List[TemporalActivityType] = Field(default_factory=list)


# ── Allocation paths ─────────────────────────────────────────────────────────

class AllocationPath(BaseModel):
    alloc_site: str
    caller_chain: List[str] = Field(default_factory=list)
    alloc_bytes: int
    alloc_bytes_str: str
    alloc_pct: float
    alloc_rate: Optional[str] = None                  # e.g. "45.00MB/min"
    alloc_rate_bytes_per_min: Optional[float] = None
    first_app_frame: Optional[str] = None


class AllocPathsReport(ReportBase):
    profile_kind: str
    total_alloc: int = 0
    total_alloc_str: str = ""
    duration_secs: Optional[float] = None
    group_by_source: bool = False
    paths: List[AllocationPath] = Field(default_factory=list)


# ── Correlation / hotspots ───────────────────────────────────────────────────

class RankedMetric(BaseModel):
    pct: float
    rank: int


class Hotspot(BaseModel):
    function: str
    pct: float


class CorrelationEntry(BaseModel):
    function: str
    combined_score: float
    cpu: Optional[RankedMetric] = None
    heap: Optional[RankedMetric] = None
    mutex: Optional[RankedMetric] = None
    insight: str = ""


class CorrelationReport(ReportBase):
    correlations: List[CorrelationEntry] = Field(default_factory=list)
    cpu_only_hotspots: List[Hotspot] = Field(default_factory=list)
    heap_only_hotspots: List[Hotspot] = Field(default_factory=list)
    mutex_only_hotspots: List[Hotspot] = Field(default_factory=list)


class HotspotReport(ReportBase):
    cpu_top: List[Hotspot] = Field(default_factory=list)
    heap_top: List[Hotspot] = Field(default_factory=list)
    mutex_top: List[Hotspot] = Field(default_factory=list)
    goroutine_count: Optional[int] = None


# ── Metadata ─────────────────────────────────────────────────────────────────

class SampleTypeInfo(BaseModel):
    type: str
    unit: str = ""


class SampleTotal(BaseModel):
    type: str
    unit: str = ""
    total: int = 0


class MetaReport(ReportBase):
    source_name: Optional[str] = None
    detected_profile_kind: str
    sample_types: List[SampleTypeInfo] = Field(default_factory=list)
    default_sample_index: int = -1
    totals: List[SampleTotal] = Field(default_factory=list)
    period_type: Optional[SampleTypeInfo] = None
    period: int = 0
    time_nanos: int = 0
    duration_nanos: int = 0
    label_keys: List[str] = Field(default_factory=list)
    go_version: Optional[str] = None
    build_id: Optional[str] = None
    hints: List[str] = Field(default_factory=list)


# ── Regression check ─────────────────────────────────────────────────────────

class RegressionCheckSpec(BaseModel):
    """One ceiling: functions matching *function* must stay at or under *max*."""
    function: str
    metric: str = "flat_pct"  # flat_pct | cum_pct
    max: float


class RegressionCheckResult(BaseModel):
    function: str
    metric: str
    threshold: float
    actual: float
    passed: bool
    matched_function: Optional[str] = None
    message: Optional[str] = None


class RegressionReport(ReportBase):
    passed: bool = True
    sample_type: str = ""
    checks: List[RegressionCheckResult] = Field(default_factory=list)


# ── Bundle ───────────────────────────────────────────────────────────────────

class BundleReport(ReportBase):
    """Per-kind reports for a set of profiles captured together."""
    overhead: Optional[OverheadReport] = None
    alloc_paths: Optional[AllocPathsReport] = None
    contention: Optional[ContentionReport] = None
    goroutines: Optional[GoroutineReport] = None
    hotspots: Optional[HotspotReport] = None
