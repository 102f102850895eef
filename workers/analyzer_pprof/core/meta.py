"""
Meta — describe a profile and suggest next steps.

``profile_meta`` reports sample types, per-type totals, timing fields,
label keys, runtime version and build id.  ``profile_hints`` turns the
detected kind into short hints naming the analyses worth running next.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from analyzer_pprof.core.primitives import detect_profile_kind
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import MetaReport, SampleTotal, SampleTypeInfo

logger = logging.getLogger(__name__)

_NAME_HINTS = ("cpu", "heap", "mutex", "block", "goroutine")


def detect_kind(profile: Profile, source_name: Optional[str] = None) -> str:
    """
    File-name hint first, then sample types.

    Unlike ``detect_profile_kind``, ``samples`` only means CPU when the
    profile has a positive sampling period.
    """
    if source_name:
        name = source_name.lower().replace("\\", "/").rsplit("/", 1)[-1]
        for kind in _NAME_HINTS:
            if kind in name:
                return kind

    for st in profile.sample_types:
        if "alloc" in st.type or "inuse" in st.type:
            return "heap"
        if st.type in ("goroutine", "goroutines"):
            return "goroutine"
        if st.type == "samples" and profile.period > 0:
            return "cpu"
        if st.type in ("delay", "contentions"):
            return "mutex"
    return "unknown"


def default_sample_index(profile: Profile) -> int:
    """Index of the declared default sample type, else 0, else -1 with no types."""
    if profile.default_sample_type:
        for idx, st in enumerate(profile.sample_types):
            if st.type == profile.default_sample_type:
                return idx
    return 0 if profile.sample_types else -1


def label_keys(profile: Profile) -> List[str]:
    keys = set()
    for sample in profile.samples:
        keys.update(sample.labels)
        keys.update(sample.num_labels)
    return sorted(keys)


def go_version(profile: Profile) -> Optional[str]:
    for comment in profile.comments:
        if "go version" in comment.lower():
            return comment.strip()
    return None


def build_id(profile: Profile) -> Optional[str]:
    for mapping in profile.mappings:
        if mapping.build_id:
            return mapping.build_id
    return None


def profile_hints(profile: Profile, sample_type: Optional[str] = None) -> List[str]:
    """Next-step hints for the profile's kind."""
    hints: List[str] = []
    kind = detect_profile_kind(profile)
    types = {st.type for st in profile.sample_types}

    if kind == "heap":
        if {"alloc_space", "inuse_space"} <= types:
            if sample_type in (None, "", "inuse_space"):
                hints.append(
                    "This is a heap profile. Use sample type 'alloc_space' to see "
                    "allocation hot spots (where memory is being allocated), not "
                    "just in-use memory."
                )
            elif sample_type == "alloc_space":
                hints.append(
                    "Showing allocation hot spots. Use the allocation paths analysis "
                    "for detailed allocation path analysis with filtering."
                )
        hints.append(
            "Use the memory analysis to detect RSS vs heap mismatches "
            "(SQLite temp_store, CGO, high goroutine stacks)."
        )
    elif kind == "cpu":
        hints.append(
            "Sort by cumulative time (time in function + callees) to find "
            "top-level hot paths."
        )
        hints.append(
            "Use the overhead report to identify infrastructure/observability overhead."
        )
    elif kind in ("mutex", "block"):
        hints.append(
            "Mutex/block profiles show contention. Look for sync.Mutex, "
            "sync.RWMutex, and channel operations."
        )
    elif kind == "goroutine":
        hints.append(
            "Goroutine profile shows stack traces. Look for goroutine leaks "
            "(growing count) or blocked goroutines."
        )
    return hints


def profile_meta(
    profile: Profile,
    source_name: Optional[str] = None,
    sample_type: Optional[str] = None,
) -> MetaReport:
    """
    Describe *profile*.  *sample_type* is the column the caller is viewing;
    it selects between the in-use and allocation heap hints.
    """
    totals = [SampleTotal(type=st.type, unit=st.unit) for st in profile.sample_types]
    for sample in profile.samples:
        for i, value in enumerate(sample.values[:len(totals)]):
            totals[i].total += value

    period_type = None
    if profile.period_type is not None:
        period_type = SampleTypeInfo(
            type=profile.period_type.type, unit=profile.period_type.unit,
        )

    report = MetaReport(
        source_name=source_name,
        detected_profile_kind=detect_kind(profile, source_name),
        sample_types=[SampleTypeInfo(type=st.type, unit=st.unit) for st in profile.sample_types],
        default_sample_index=default_sample_index(profile),
        totals=totals,
        period_type=period_type,
        period=profile.period,
        time_nanos=profile.time_nanos,
        duration_nanos=profile.duration_nanos,
        label_keys=label_keys(profile),
        go_version=go_version(profile),
        build_id=build_id(profile),
        hints=profile_hints(profile, sample_type=sample_type),
    )
    if not profile.samples:
        report.warnings.append("profile has no samples")
    if sample_type and sample_type not in {st.type for st in profile.sample_types}:
        report.warnings.append(f"sample type '{sample_type}' not found")
    return report
