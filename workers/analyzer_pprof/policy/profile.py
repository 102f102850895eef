"""
AnalysisProfile — tunable thresholds for every detector.

The profile encapsulates all policy knobs so that core detection logic
contains no magic numbers.  Changing a threshold is a profile change, not
a code change.  Detectors receive the profile explicitly; nothing reads a
module-level default behind the caller's back.
"""
from dataclasses import dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class AnalysisProfile:
    """Thresholds and caps shared by the pprof detectors."""

    # Identity
    profile_id: str

    # Overhead
    min_overhead_pct: float = 1.0
    suggestion_min_pct: float = 10.0
    severity_medium_pct: float = 5.0
    severity_high_pct: float = 15.0
    total_overhead_warn_pct: float = 30.0
    overhead_top_functions: int = 3

    # Off-heap memory (MB)
    churn_alloc_mb: float = 1024.0
    churn_inuse_mb: float = 500.0
    goroutine_stack_medium: int = 1000
    goroutine_stack_high: int = 10000
    goroutine_stack_floor_kb: int = 2
    rss_mismatch_mb: float = 500.0

    # Contention
    hot_lock_pct: float = 35.0
    lock_convoy_pct: float = 70.0
    lock_convoy_min_sites: int = 3
    high_contention_count: int = 50000
    top_waiters: int = 3

    # Goroutines
    leak_threshold: int = 1000
    max_leak_candidates: int = 5
    max_wait_reasons: int = 5
    leak_signature_frames: int = 8
    wait_reason_frames: int = 6
    uncategorized_frames: int = 4
    max_uncategorized: int = 10

    # Allocation paths
    min_alloc_pct: float = 1.0
    max_alloc_paths: int = 20
    caller_chain_frames: int = 8
    app_prefixes: Tuple[str, ...] = field(default_factory=tuple)

    # Temporal SDK workers
    temporal_default_pollers: int = 2
    temporal_workflow_frames: int = 8
    temporal_activity_frames: int = 6

    # Correlation / summaries
    correlation_node_count: int = 20
    correlation_only_cap: int = 5
    hotspot_count: int = 5
    overhead_hint_pct: float = 20.0

    @classmethod
    def v0(cls) -> "AnalysisProfile":
        """The locked v0 profile: go-runtime-pprof."""
        return cls(profile_id="go-runtime-pprof-v0")
