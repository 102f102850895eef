"""
Allocation paths — where heap allocations come from.

Per sample, the leaf allocator frame (``runtime.mallocgc`` and friends)
is dropped so the allocation site is the first frame the program wrote.
Samples are aggregated by allocation site, or by their first application
frame when grouping by source.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from analyzer_pprof.core.primitives import (
    ProfileKind,
    column_total,
    detect_profile_kind,
    find_sample_index_exact,
    format_value,
    percentage,
    sample_value,
    stack_frames,
)
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import AllocationPath, AllocPathsReport
from analyzer_pprof.policy.patterns import RUNTIME_ALLOC_PREFIXES
from analyzer_pprof.policy.profile import AnalysisProfile

logger = logging.getLogger(__name__)


def is_runtime_alloc(function: str) -> bool:
    return function.startswith(RUNTIME_ALLOC_PREFIXES)


def allocation_chain(frames: Sequence[str]) -> List[str]:
    """Frames leaf → root with a leaf allocator frame removed."""
    if frames and is_runtime_alloc(frames[0]):
        return list(frames[1:])
    return list(frames)


def first_app_frame(chain: Sequence[str], prefixes: Sequence[str]) -> str:
    for frame in chain:
        if any(p in frame for p in prefixes):
            return frame
    return ""


@dataclass
class _SiteInfo:
    value: int
    caller_chain: List[str] = field(default_factory=list)
    first_app: str = ""


def analyze_alloc_paths(
    profile: Profile,
    policy: AnalysisProfile,
    app_prefixes: Optional[Sequence[str]] = None,
    min_percent: Optional[float] = None,
    max_paths: Optional[int] = None,
    group_by_source: bool = False,
) -> AllocPathsReport:
    """
    Rank allocation sites by bytes allocated.

    Parameters
    ----------
    app_prefixes : Sequence[str], optional
        Substrings identifying application frames.  Samples without one are
        excluded from the paths (still counted in the total).  Defaults to
        the policy's prefixes; when none are configured nothing is filtered.
    min_percent, max_paths : optional
        Override the policy's floor (1.0%) and cap (20).  A floor of 0
        keeps every path; a negative floor raises ValueError.  A cap of 0
        or less falls back to the policy cap.
    group_by_source : bool
        Aggregate by first application frame instead of allocation site.
    """
    prefixes = tuple(app_prefixes if app_prefixes is not None else policy.app_prefixes)
    if min_percent is not None and min_percent < 0:
        raise ValueError(f"min_percent must be >= 0, got {min_percent}")
    min_pct = policy.min_alloc_pct if min_percent is None else min_percent
    cap = max_paths if max_paths is not None and max_paths > 0 else policy.max_alloc_paths

    report = AllocPathsReport(
        profile_kind=detect_profile_kind(profile),
        group_by_source=group_by_source,
    )
    if report.profile_kind != ProfileKind.HEAP.value:
        report.warnings.append(
            "profile does not appear to be a heap profile; results may be inaccurate"
        )

    index = find_sample_index_exact(profile, "alloc_space")
    if index < 0:
        index = 0
        report.warnings.append("alloc_space not found; using default sample type")

    total = column_total(profile, index)
    report.total_alloc = total
    report.total_alloc_str = format_value(total, "bytes")
    if profile.duration_nanos > 0:
        report.duration_secs = profile.duration_nanos / 1e9

    if total == 0:
        report.warnings.append("no allocations in profile")
        return report

    if not prefixes:
        report.warnings.append(
            "no application prefixes configured; allocation paths are not filtered"
        )

    # ── Step 1: aggregate ────────────────────────────────────────────
    sites: Dict[str, _SiteInfo] = {}
    for sample in profile.samples:
        value = sample_value(sample, index, default=0)
        if value == 0:
            continue

        chain = allocation_chain(stack_frames(sample))
        if not chain:
            continue
        app_frame = first_app_frame(chain, prefixes) if prefixes else ""
        if prefixes and not app_frame:
            continue

        key = chain[0]
        if group_by_source and app_frame:
            key = app_frame

        info = sites.get(key)
        if info is None:
            sites[key] = _SiteInfo(
                value=value,
                caller_chain=chain[:policy.caller_chain_frames],
                first_app=app_frame,
            )
        else:
            info.value += value

    # ── Step 2: filter, rank, cap ────────────────────────────────────
    paths: List[AllocationPath] = []
    for site, info in sites.items():
        pct = percentage(info.value, total)
        if pct < min_pct:
            continue
        path = AllocationPath(
            alloc_site=site,
            caller_chain=info.caller_chain,
            alloc_bytes=info.value,
            alloc_bytes_str=format_value(info.value, "bytes"),
            alloc_pct=pct,
            first_app_frame=info.first_app or None,
        )
        if report.duration_secs:
            per_min = info.value / report.duration_secs * 60
            path.alloc_rate_bytes_per_min = per_min
            path.alloc_rate = format_value(int(per_min), "bytes") + "/min"
        paths.append(path)

    paths.sort(key=lambda p: (-p.alloc_bytes, p.alloc_site))
    report.paths = paths[:cap]

    logger.debug("alloc paths: %d of %d sites kept", len(report.paths), len(sites))
    return report
