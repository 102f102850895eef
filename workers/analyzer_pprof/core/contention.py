"""
Contention — attribute mutex / block delay to lock sites and waiters.

A lock site is the first frame naming a lock primitive (leaf → root), or
the leaf frame when none does.  The waiter is the first application frame
above the lock site; its ``file:line`` becomes the site's source location.
Sites are keyed ``lock_site@source_location`` so two call sites of the
same primitive stay separate.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from analyzer_pprof.core.primitives import (
    FrameInfo,
    find_sample_index_exact,
    format_value,
    percentage,
    sample_unit,
    sample_value,
    stack_frame_infos,
)
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import (
    ContentionPattern,
    ContentionReport,
    ContentionWaiter,
    LockSite,
)
from analyzer_pprof.policy.patterns import LOCK_PRIMITIVES, RUNTIME_FRAME_PREFIXES
from analyzer_pprof.policy.profile import AnalysisProfile
from analyzer_pprof.policy.verdict import Severity

logger = logging.getLogger(__name__)

PATTERN_HOT_LOCK = "hot_lock"
PATTERN_LOCK_CONVOY = "lock_convoy"
PATTERN_HIGH_CONTENTION = "high_contention"


@dataclass
class _SiteStats:
    lock_site: str
    source_location: str
    contentions: int = 0
    total_delay: int = 0
    waiters: Dict[str, int] = field(default_factory=dict)


def contention_profile_type(profile: Profile, source_name: Optional[str] = None) -> str:
    """``block`` / ``mutex`` from the file name, then from sample types."""
    if source_name:
        name = source_name.lower()
        if "block" in name:
            return "block"
        if "mutex" in name:
            return "mutex"
    for st in profile.sample_types:
        if st.type in ("delay", "contentions"):
            return "mutex"
    return "unknown"


def pick_lock_site(frames: Sequence[FrameInfo]) -> Tuple[str, int]:
    """(function, index) of the lock frame; leaf frame as fallback; ("", -1) if empty."""
    for i, frame in enumerate(frames):
        lower = frame.function.lower()
        if any(p in lower for p in LOCK_PRIMITIVES):
            return frame.function, i
    if frames:
        return frames[0].function, 0
    return "", -1


def _is_runtime_frame(name: str) -> bool:
    return name.startswith(RUNTIME_FRAME_PREFIXES)


def pick_source_and_waiter(frames: Sequence[FrameInfo], lock_index: int) -> Tuple[str, str]:
    """(source_location, waiter) for a stack whose lock frame is *lock_index*."""
    source = ""
    waiter = ""
    for frame in frames[max(lock_index + 1, 0):]:
        if _is_runtime_frame(frame.function):
            continue
        waiter = frame.function
        source = frame.source_location
        break

    if not source and 0 <= lock_index < len(frames):
        source = frames[lock_index].source_location
    if not waiter and frames:
        waiter = frames[0].function
    return source, waiter


def lock_site_key(lock_site: str, source_location: str) -> str:
    if source_location:
        return f"{lock_site}@{source_location}"
    return lock_site


def _contention_value(sample, index: int) -> int:
    if index < 0:
        return 0
    return sample_value(sample, index, default=0)


def _detect_patterns(
    ordered: List[Tuple[str, _SiteStats]],
    total_contentions: int,
    policy: AnalysisProfile,
) -> List[ContentionPattern]:
    patterns: List[ContentionPattern] = []
    if not ordered:
        return patterns

    total_delay = sum(stats.total_delay for _, stats in ordered)
    if total_delay > 0:
        top_pct = percentage(ordered[0][1].total_delay, total_delay)
        if top_pct >= policy.hot_lock_pct:
            patterns.append(ContentionPattern(
                type=PATTERN_HOT_LOCK,
                severity=Severity.HIGH.value,
                description=f"Single lock accounts for {top_pct:.1f}% of total delay",
            ))
        n = policy.lock_convoy_min_sites
        if len(ordered) >= n:
            top_n = sum(stats.total_delay for _, stats in ordered[:n])
            top_n_pct = percentage(top_n, total_delay)
            if top_n_pct >= policy.lock_convoy_pct:
                patterns.append(ContentionPattern(
                    type=PATTERN_LOCK_CONVOY,
                    severity=Severity.MEDIUM.value,
                    description=f"Top {n} locks account for {top_n_pct:.1f}% of total delay",
                ))

    if total_contentions >= policy.high_contention_count:
        patterns.append(ContentionPattern(
            type=PATTERN_HIGH_CONTENTION,
            severity=Severity.MEDIUM.value,
            description=f"High contention count ({total_contentions})",
        ))
    return patterns


def _recommendations(patterns: List[ContentionPattern], sites: List[LockSite]) -> List[str]:
    recs: List[str] = []
    for pattern in patterns:
        if pattern.type == PATTERN_HOT_LOCK:
            if sites:
                recs.append(
                    "Consider sharding or reducing critical sections around "
                    f"{sites[0].lock_site} ({sites[0].source_location})."
                )
            else:
                recs.append("Consider sharding or reducing critical sections around hot locks.")
        elif pattern.type == PATTERN_LOCK_CONVOY:
            recs.append(
                "Multiple locks show high contention; review lock ordering "
                "and reduce time spent in critical sections."
            )
        elif pattern.type == PATTERN_HIGH_CONTENTION:
            recs.append(
                "High contention volume detected; consider batching or "
                "lock-free data structures where possible."
            )
    return recs


def analyze_contention(
    profile: Profile,
    policy: AnalysisProfile,
    source_name: Optional[str] = None,
) -> ContentionReport:
    """
    Group contention samples by lock site.

    Samples with neither delay nor contentions are skipped.  When the
    ``contentions`` column is missing each sample counts once.
    """
    report = ContentionReport(profile_type=contention_profile_type(profile, source_name))
    if report.profile_type not in ("mutex", "block"):
        report.warnings.append(
            "profile does not appear to be a mutex/block profile; results may be inaccurate"
        )

    delay_idx = find_sample_index_exact(profile, "delay")
    cont_idx = find_sample_index_exact(profile, "contentions")
    unit = sample_unit(profile, delay_idx, "nanoseconds")
    if delay_idx < 0:
        report.warnings.append("delay sample type not found; total_delay may be inaccurate")
    if cont_idx < 0:
        report.warnings.append("contentions sample type not found; counts are approximated")

    # ── Step 1: aggregate per lock site ──────────────────────────────
    sites: Dict[str, _SiteStats] = {}
    for sample in profile.samples:
        contentions = 1 if cont_idx < 0 else _contention_value(sample, cont_idx)
        delay = _contention_value(sample, delay_idx)
        if contentions == 0 and delay == 0:
            continue

        report.total_contentions += contentions
        report.total_delay += delay

        frames = stack_frame_infos(sample)
        lock_site, lock_index = pick_lock_site(frames)
        if not lock_site:
            continue
        source, waiter = pick_source_and_waiter(frames, lock_index)

        key = lock_site_key(lock_site, source)
        stats = sites.get(key)
        if stats is None:
            stats = sites[key] = _SiteStats(lock_site=lock_site, source_location=source)
        stats.contentions += contentions
        stats.total_delay += delay
        if waiter:
            stats.waiters[waiter] = stats.waiters.get(waiter, 0) + delay

    report.total_delay_str = format_value(report.total_delay, unit)

    # ── Step 2: rank sites (delay desc, key asc) ─────────────────────
    ordered = sorted(sites.items(), key=lambda kv: (-kv[1].total_delay, kv[0]))

    for key, stats in ordered:
        avg = stats.total_delay // stats.contentions if stats.contentions > 0 else 0
        waiters = sorted(stats.waiters.items(), key=lambda kv: (-kv[1], kv[0]))
        report.by_lock_site.append(LockSite(
            key=key,
            lock_site=stats.lock_site,
            source_location=stats.source_location,
            contentions=stats.contentions,
            total_delay=stats.total_delay,
            total_delay_str=format_value(stats.total_delay, unit),
            avg_delay=avg,
            avg_delay_str=format_value(avg, unit),
            top_waiters=[
                ContentionWaiter(function=name, delay=d, delay_str=format_value(d, unit))
                for name, d in waiters[:policy.top_waiters]
            ],
        ))

    # ── Step 3: patterns + recommendations ───────────────────────────
    report.patterns = _detect_patterns(ordered, report.total_contentions, policy)
    report.recommendations = _recommendations(report.patterns, report.by_lock_site)

    logger.debug(
        "contention: %d sites, %d patterns", len(report.by_lock_site), len(report.patterns),
    )
    return report
