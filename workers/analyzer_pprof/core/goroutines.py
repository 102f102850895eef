"""
Goroutines — wait-reason / state breakdown and leak candidacy.

Every goroutine sample contributes ``count`` goroutines (values ≤ 0 count
as one).  Wait reasons come from an ordered table: the first reason whose
pattern appears anywhere in the stack wins.  Leak candidates are identical
8-frame stacks whose population reaches half the leak threshold.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from analyzer_pprof.core.primitives import (
    ProfileKind,
    detect_profile_kind,
    find_sample_index,
    sample_label,
    sample_value,
    stack_frames,
    stack_signature,
)
from analyzer_pprof.core.profile import Profile, Sample
from analyzer_pprof.io.schema import GoroutineReport, LeakCandidate, WaitReasonEntry
from analyzer_pprof.policy.patterns import (
    REASON_STATES,
    STATE_LABEL_KEYS,
    UNKNOWN_REASON,
    WAIT_REASONS,
)
from analyzer_pprof.policy.profile import AnalysisProfile
from analyzer_pprof.policy.verdict import leak_severity

logger = logging.getLogger(__name__)

GOROUTINE_SAMPLE_TYPES = ("goroutine", "goroutines")
NOT_GOROUTINE_WARNING = (
    "profile does not appear to be a goroutine profile; results may be inaccurate"
)


def goroutine_count(sample: Sample, index: int) -> int:
    count = sample_value(sample, index)
    return count if count > 0 else 1


def count_goroutines(profile: Profile) -> int:
    index = find_sample_index(profile, GOROUTINE_SAMPLE_TYPES)
    return sum(goroutine_count(s, index) for s in profile.samples)


def detect_wait_reason(frames: Sequence[str]) -> str:
    """First reason (table order) with a pattern anywhere in *frames*."""
    lowered = [f.lower() for f in frames]
    for reason, patterns in WAIT_REASONS:
        for frame in lowered:
            if any(p in frame for p in patterns):
                return reason
    return UNKNOWN_REASON


def state_from_reason(reason: str) -> str:
    return REASON_STATES.get(reason, "unknown")


def goroutine_state(sample: Sample, reason: str) -> str:
    return sample_label(sample, STATE_LABEL_KEYS) or state_from_reason(reason)


@dataclass
class _WaitInfo:
    count: int
    sample_stack: str


@dataclass
class _LeakInfo:
    count: int
    state: str
    wait_reason: str


def analyze_goroutines(
    profile: Profile,
    policy: AnalysisProfile,
    leak_threshold: Optional[int] = None,
) -> GoroutineReport:
    """
    Classify goroutines and surface leak candidates.

    ``leak_threshold`` overrides the policy's threshold (high at the
    threshold, medium at half of it).
    """
    threshold = leak_threshold if leak_threshold and leak_threshold > 0 else policy.leak_threshold

    report = GoroutineReport()
    if detect_profile_kind(profile) != ProfileKind.GOROUTINE.value:
        report.warnings.append(NOT_GOROUTINE_WARNING)

    index = find_sample_index(profile, GOROUTINE_SAMPLE_TYPES)

    reasons: Dict[str, _WaitInfo] = {}
    leaks: Dict[str, _LeakInfo] = {}

    for sample in profile.samples:
        count = goroutine_count(sample, index)
        report.total_goroutines += count

        frames = stack_frames(sample)
        reason = detect_wait_reason(frames)
        state = goroutine_state(sample, reason)
        report.by_state[state] = report.by_state.get(state, 0) + count

        info = reasons.get(reason)
        if info is None:
            reasons[reason] = _WaitInfo(
                count=count,
                sample_stack=stack_signature(frames, policy.wait_reason_frames),
            )
        else:
            info.count += count

        signature = stack_signature(frames, policy.leak_signature_frames)
        if not signature:
            continue
        leak = leaks.get(signature)
        if leak is None:
            leaks[signature] = _LeakInfo(count=count, state=state, wait_reason=reason)
        else:
            leak.count += count

    ranked_reasons = sorted(reasons.items(), key=lambda kv: (-kv[1].count, kv[0]))
    report.top_wait_reasons = [
        WaitReasonEntry(reason=reason, count=info.count, sample_stack=info.sample_stack)
        for reason, info in ranked_reasons[:policy.max_wait_reasons]
    ]

    candidates: List[LeakCandidate] = []
    for signature, leak in leaks.items():
        severity = leak_severity(leak.count, threshold)
        if severity is None:
            continue
        candidates.append(LeakCandidate(
            stack_signature=signature,
            count=leak.count,
            severity=severity.value,
            state=leak.state,
            wait_reason=leak.wait_reason,
        ))
    candidates.sort(key=lambda c: (-c.count, c.stack_signature))
    report.potential_leaks = candidates[:policy.max_leak_candidates]

    report.by_state = dict(sorted(report.by_state.items()))

    logger.debug(
        "goroutines: %d total, %d leak candidates",
        report.total_goroutines, len(report.potential_leaks),
    )
    return report
