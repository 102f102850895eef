"""
Correlate — merge per-profile top-function rankings.

Each of the CPU, heap and mutex (or block) profiles contributes its top-N
flat functions.  A function's score in one profile is
``(max_rank - rank + 1) / max_rank``; the combined score is the mean over
the profiles it appears in.  Only functions hot in two or more profiles
become correlations; the rest feed the per-profile ``*_only`` lists.

The hotspot summary reuses the same per-profile top tables.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from analyzer_pprof.core.goroutines import count_goroutines
from analyzer_pprof.core.primitives import find_sample_index, flat_top
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import (
    CorrelationEntry,
    CorrelationReport,
    Hotspot,
    HotspotReport,
    RankedMetric,
)
from analyzer_pprof.policy.profile import AnalysisProfile

logger = logging.getLogger(__name__)

KIND_CPU = "cpu"
KIND_HEAP = "heap"
KIND_MUTEX = "mutex"
KIND_BLOCK = "block"
KIND_GOROUTINE = "goroutine"

CORRELATION_KINDS = (KIND_CPU, KIND_HEAP, KIND_MUTEX)
_KIND_ALIASES = {KIND_BLOCK: KIND_MUTEX, "goroutines": KIND_GOROUTINE}

# Candidate sample types per kind; fallbacks follow ``find_sample_index``.
_SAMPLE_CANDIDATES = {
    KIND_CPU: ("cpu", "samples"),
    KIND_HEAP: ("alloc_space",),
    KIND_MUTEX: ("delay", "contentions"),
}

INSIGHT_ALL = "High CPU, allocations, and lock contention - prime optimization target."
INSIGHT_CPU_HEAP = "Hot in CPU and allocations."
INSIGHT_CPU_MUTEX = "Hot in CPU and contention."
INSIGHT_HEAP_MUTEX = "Hot in allocations and contention."
INSIGHT_GENERIC = "Hotspot appears in multiple profiles."


@dataclass(frozen=True)
class TopMetric:
    function: str
    pct: float
    rank: int


def normalize_bundle(
    profiles: Mapping[str, Optional[Profile]],
    warnings: List[str],
) -> Dict[str, Profile]:
    """
    Canonical kind → profile.  ``block`` stands in for ``mutex`` only when
    no mutex profile is given; unrecognized kinds are ignored with a warning.
    """
    bundle: Dict[str, Profile] = {}
    # "block" sorts before "mutex", so a mutex profile overwrites it.
    for kind in sorted(profiles):
        prof = profiles[kind]
        if prof is None:
            continue
        canonical = _KIND_ALIASES.get(kind, kind)
        if canonical not in (KIND_CPU, KIND_HEAP, KIND_MUTEX, KIND_GOROUTINE):
            warnings.append(f"unsupported profile kind ignored: {kind}")
            continue
        bundle[canonical] = prof
    return bundle


def top_metrics(profile: Profile, kind: str, node_count: int) -> List[TopMetric]:
    """
    Top-N flat rows with non-zero percentage.

    Rank is the row position in the flat table, so a dropped zero row
    leaves a gap rather than shifting later ranks.
    """
    index = find_sample_index(profile, _SAMPLE_CANDIDATES.get(kind, ()))
    return [
        TopMetric(function=row.name, pct=row.flat_pct, rank=row.rank)
        for row in flat_top(profile, index, node_count)
        if row.flat_pct != 0
    ]


def rank_score(rank: int, max_rank: int) -> float:
    if max_rank <= 0 or rank <= 0:
        return 0.0
    rank = min(rank, max_rank)
    return (max_rank - rank + 1) / max_rank


def correlation_insight(has_cpu: bool, has_heap: bool, has_mutex: bool) -> str:
    if has_cpu and has_heap and has_mutex:
        return INSIGHT_ALL
    if has_cpu and has_heap:
        return INSIGHT_CPU_HEAP
    if has_cpu and has_mutex:
        return INSIGHT_CPU_MUTEX
    if has_heap and has_mutex:
        return INSIGHT_HEAP_MUTEX
    return INSIGHT_GENERIC


def _only_list(
    tops: List[TopMetric],
    seen_in: Dict[str, Dict[str, TopMetric]],
    cap: int,
) -> List[Hotspot]:
    out: List[Hotspot] = []
    for item in tops:
        if len(seen_in.get(item.function, {})) < 2:
            out.append(Hotspot(function=item.function, pct=item.pct))
        if len(out) >= cap:
            break
    return out


def correlate_profiles(
    profiles: Mapping[str, Optional[Profile]],
    policy: AnalysisProfile,
    node_count: Optional[int] = None,
) -> CorrelationReport:
    """
    Cross-rank functions across CPU, heap and mutex/block profiles.

    Raises ValueError when no profile is supplied at all.
    """
    if not any(p is not None for p in profiles.values()):
        raise ValueError("profiles are required")

    n = node_count if node_count and node_count > 0 else policy.correlation_node_count
    report = CorrelationReport()
    bundle = normalize_bundle(profiles, report.warnings)

    # ── Step 1: per-profile top tables ───────────────────────────────
    tops: Dict[str, List[TopMetric]] = {}
    for kind in CORRELATION_KINDS:
        prof = bundle.get(kind)
        if prof is None:
            report.warnings.append(f"{kind} profile missing for correlation")
            tops[kind] = []
            continue
        tops[kind] = top_metrics(prof, kind, n)

    max_ranks = {kind: max((t.rank for t in tops[kind]), default=0) for kind in tops}

    # function → kind → metric
    seen_in: Dict[str, Dict[str, TopMetric]] = {}
    for kind in CORRELATION_KINDS:
        for item in tops[kind]:
            seen_in.setdefault(item.function, {})[kind] = item

    # ── Step 2: combined scores ──────────────────────────────────────
    entries: List[CorrelationEntry] = []
    for function, by_kind in seen_in.items():
        if len(by_kind) < 2:
            continue
        score = sum(rank_score(m.rank, max_ranks[k]) for k, m in by_kind.items()) / len(by_kind)

        def ranked(kind: str) -> Optional[RankedMetric]:
            m = by_kind.get(kind)
            return RankedMetric(pct=m.pct, rank=m.rank) if m else None

        entries.append(CorrelationEntry(
            function=function,
            combined_score=score,
            cpu=ranked(KIND_CPU),
            heap=ranked(KIND_HEAP),
            mutex=ranked(KIND_MUTEX),
            insight=correlation_insight(
                KIND_CPU in by_kind, KIND_HEAP in by_kind, KIND_MUTEX in by_kind,
            ),
        ))

    entries.sort(key=lambda e: (-e.combined_score, e.function))
    report.correlations = entries

    cap = policy.correlation_only_cap
    report.cpu_only_hotspots = _only_list(tops[KIND_CPU], seen_in, cap)
    report.heap_only_hotspots = _only_list(tops[KIND_HEAP], seen_in, cap)
    report.mutex_only_hotspots = _only_list(tops[KIND_MUTEX], seen_in, cap)

    logger.debug("correlate: %d correlations", len(entries))
    return report


def summarize_hotspots(
    profiles: Mapping[str, Optional[Profile]],
    policy: AnalysisProfile,
    node_count: Optional[int] = None,
) -> HotspotReport:
    """
    Top flat functions per CPU / heap / mutex profile plus goroutine total.

    Raises ValueError when no profile is supplied at all.
    """
    if not any(p is not None for p in profiles.values()):
        raise ValueError("profiles are required")

    n = node_count if node_count and node_count > 0 else policy.hotspot_count
    report = HotspotReport()
    bundle = normalize_bundle(profiles, report.warnings)

    targets: Tuple[Tuple[str, str, str], ...] = (
        (KIND_CPU, "cpu_top", "cpu profile missing from bundle"),
        (KIND_HEAP, "heap_top", "heap profile missing from bundle"),
        (KIND_MUTEX, "mutex_top", "mutex/block profile missing from bundle"),
    )
    for kind, attr, missing in targets:
        prof = bundle.get(kind)
        if prof is None:
            report.warnings.append(missing)
            continue
        setattr(report, attr, [
            Hotspot(function=m.function, pct=m.pct) for m in top_metrics(prof, kind, n)
        ])

    goroutine_profile = bundle.get(KIND_GOROUTINE)
    if goroutine_profile is not None:
        report.goroutine_count = count_goroutines(goroutine_profile)
    else:
        report.warnings.append("goroutine profile missing from bundle")

    return report
