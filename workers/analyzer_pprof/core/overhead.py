"""
Overhead — attribute sample mass to infrastructure categories.

Each sample is credited to at most one category: the stack is walked
leaf → root and, at each frame, categories are tested in table order.
The first (frame, category) hit takes the whole sample value, so the
category totals can never exceed the profile total.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from analyzer_pprof.core.primitives import (
    column_total,
    detect_profile_kind,
    find_sample_index,
    format_value,
    percentage,
    sample_value,
    stack_frames,
)
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import OverheadDetection, OverheadReport
from analyzer_pprof.policy.patterns import OVERHEAD_CATEGORIES, OverheadCategory
from analyzer_pprof.policy.profile import AnalysisProfile
from analyzer_pprof.policy.verdict import Severity, severity_for_percentage

logger = logging.getLogger(__name__)


def _top_functions(funcs: Dict[str, int], n: int) -> List[str]:
    ranked = sorted(funcs.items(), key=lambda kv: (-kv[1], kv[0]))
    return [name for name, _ in ranked[:n]]


def classify_frame(
    function: str,
    categories: Sequence[OverheadCategory] = OVERHEAD_CATEGORIES,
) -> Optional[OverheadCategory]:
    for cat in categories:
        if cat.matches(function):
            return cat
    return None


def detect_overhead(
    profile: Profile,
    policy: AnalysisProfile,
    sample_index: Optional[int] = None,
    categories: Sequence[OverheadCategory] = OVERHEAD_CATEGORIES,
) -> OverheadReport:
    """
    Categorize one sample column into infrastructure overhead buckets.

    Parameters
    ----------
    profile : Profile
        Parsed profile (any kind; CPU is the usual input).
    policy : AnalysisProfile
        Emission floor, severity bands, suggestion floor, warning level.
    sample_index : int, optional
        Column to analyze.  ``None`` picks the default sample type.
        Out-of-range values fall back to 0 with a warning.
    """
    report = OverheadReport(profile_kind=detect_profile_kind(profile))

    if not profile.sample_types:
        report.warnings.append("profile has no sample types")
        return report

    if sample_index is None:
        sample_index = find_sample_index(profile, ())
    if not 0 <= sample_index < len(profile.sample_types):
        report.warnings.append(
            f"sample index {sample_index} out of range; using 0"
        )
        sample_index = 0

    st = profile.sample_types[sample_index]
    report.sample_type = st.type
    report.unit = st.unit

    total = column_total(profile, sample_index)
    report.total_value = total
    report.total_value_str = format_value(total, st.unit)

    if total == 0:
        report.warnings.append("profile has no samples")
        return report

    # ── Step 1: first-match attribution ──────────────────────────────
    cat_values: Dict[str, int] = {}
    cat_funcs: Dict[str, Dict[str, int]] = {}

    for sample in profile.samples:
        value = sample_value(sample, sample_index, default=0)
        if value == 0:
            continue
        for frame in stack_frames(sample):
            cat = classify_frame(frame, categories)
            if cat is None:
                continue
            cat_values[cat.name] = cat_values.get(cat.name, 0) + value
            funcs = cat_funcs.setdefault(cat.name, {})
            funcs[frame] = funcs.get(frame, 0) + value
            break

    # ── Step 2: emit significant categories ──────────────────────────
    detections: List[OverheadDetection] = []
    for cat in categories:
        value = cat_values.get(cat.name, 0)
        if value == 0:
            continue
        pct = percentage(value, total)
        if pct < policy.min_overhead_pct:
            continue

        severity = severity_for_percentage(pct, policy)
        suggestion = None
        if cat.suggestion and pct >= policy.suggestion_min_pct:
            suggestion = cat.suggestion

        detections.append(OverheadDetection(
            category=cat.name,
            description=cat.description,
            value=value,
            value_str=format_value(value, st.unit),
            percentage=pct,
            top_functions=_top_functions(cat_funcs[cat.name], policy.overhead_top_functions),
            severity=severity.value,
            suggestion=suggestion,
        ))

    # Stable: equal percentages keep table order.
    detections.sort(key=lambda d: -d.percentage)
    report.detections = detections
    report.total_overhead_pct = sum(d.percentage for d in detections)

    if report.total_overhead_pct > policy.total_overhead_warn_pct:
        report.warnings.append(
            f"High observability overhead: {report.total_overhead_pct:.1f}% "
            "of profile is infrastructure/observability code"
        )

    report.hints = overhead_hints(report, policy)

    logger.debug(
        "overhead: %d detections, %.1f%% total",
        len(detections), report.total_overhead_pct,
    )
    return report


def overhead_hints(report: OverheadReport, policy: AnalysisProfile) -> List[str]:
    """Next-step hints drawn from an overhead report."""
    hints: List[str] = []
    if report.total_overhead_pct > policy.overhead_hint_pct:
        hints.append(
            "High observability overhead detected. Start with the highest "
            "detection and its suggestion."
        )
    for d in report.detections:
        if d.severity == Severity.HIGH.value and d.suggestion:
            hints.append(d.suggestion)
    return hints
