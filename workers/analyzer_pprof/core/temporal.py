"""
Temporal — infer Temporal SDK worker settings from a goroutine profile.

The SDK parks a recognizable goroutine for every poller, executing
activity, cached workflow coroutine and heartbeat.  Counting them gives
the poller concurrency a worker runs with and how busy it is, without
access to its configuration.

Each sample's stack is joined with ``" | "`` and tested against every
counter pattern, so one goroutine can bump several counters.  Poller
counts are inferred as the larger of the "in doPoll" and "in gRPC" rows:
at any instant a poller sits in one of the two.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Pattern, Sequence, Tuple

from analyzer_pprof.core.goroutines import (
    GOROUTINE_SAMPLE_TYPES,
    NOT_GOROUTINE_WARNING,
    goroutine_count,
)
from analyzer_pprof.core.primitives import (
    ProfileKind,
    detect_profile_kind,
    find_sample_index,
    stack_frames,
    stack_signature,
)
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import (
    TemporalActivityType,
    TemporalCounts,
    TemporalInferredSettings,
    TemporalReport,
    TemporalWorkflowType,
)
from analyzer_pprof.policy.patterns import (
    TEMPORAL_COUNTERS,
    TEMPORAL_SDK_PACKAGE,
    WORKFLOW_STATES,
)
from analyzer_pprof.policy.profile import AnalysisProfile

logger = logging.getLogger(__name__)

_COUNTERS: Tuple[Tuple[str, Pattern[str]], ...] = tuple(
    (name, re.compile(pattern)) for name, pattern in TEMPORAL_COUNTERS
)
_ACTIVITY_COUNTER = "activities_executing"
_WORKFLOW_COUNTER = "workflows_cached"

NO_TEMPORAL_WARNING = "no Temporal SDK goroutines found"


def _user_function(frames: Sequence[str], keywords: Sequence[str]) -> str:
    """
    Short name of the first non-SDK frame containing a keyword.

    ``github.com/acme/app.OrderWorkflow[...]`` → ``OrderWorkflow``.
    """
    for frame in frames:
        if TEMPORAL_SDK_PACKAGE in frame:
            continue
        if not any(k in frame for k in keywords):
            continue
        # generic instantiations carry dots inside the brackets
        base = frame.split("[", 1)[0] or frame
        return base.rsplit(".", 1)[-1]
    return ""


def workflow_state(frames: Sequence[str]) -> str:
    """First matching marker; receivers are unwrapped so ``(*selectorImpl).Select`` counts."""
    joined = " ".join(frames).replace("(*", "").replace(")", "")
    for state, markers in WORKFLOW_STATES:
        if any(m in joined for m in markers):
            return state
    return "unknown"


def workflow_name(frames: Sequence[str]) -> str:
    return _user_function(frames, ("Workflow", "workflow"))


def activity_name(frames: Sequence[str]) -> str:
    return _user_function(frames, ("Activity", "activity"))


def _poller_note(kind: str, pollers: int, default: int) -> str:
    if pollers == default:
        return f"{kind} pollers appear to use default ({default})"
    return f"{kind} pollers configured to {pollers} (non-default)"


def infer_settings(counts: TemporalCounts, policy: AnalysisProfile) -> TemporalInferredSettings:
    settings = TemporalInferredSettings(
        active_activities=counts.activities_executing,
        cached_workflows=counts.workflows_cached,
        active_local_activities=counts.local_activities_executing,
        active_sessions=counts.sessions_active,
    )
    default = policy.temporal_default_pollers

    activity_pollers = max(counts.activity_pollers_do_poll, counts.activity_pollers_in_grpc)
    if activity_pollers > 0:
        settings.max_concurrent_activity_task_pollers = activity_pollers
        settings.notes.append(_poller_note("Activity", activity_pollers, default))

    workflow_pollers = max(counts.workflow_pollers_do_poll, counts.workflow_pollers_in_grpc)
    if workflow_pollers > 0:
        settings.max_concurrent_workflow_task_pollers = workflow_pollers
        settings.notes.append(_poller_note("Workflow", workflow_pollers, default))

    if counts.activities_executing > 0:
        settings.notes.append(f"{counts.activities_executing} activities currently executing")
    if counts.workflows_cached > 0:
        settings.notes.append(f"{counts.workflows_cached} workflows cached (sticky cache)")
    if counts.heartbeat_goroutines > 0:
        settings.notes.append(f"{counts.heartbeat_goroutines} heartbeat goroutines active")
    return settings


@dataclass
class _TypeInfo:
    count: int
    sample_stack: str


def analyze_temporal(profile: Profile, policy: AnalysisProfile) -> TemporalReport:
    """Count Temporal SDK goroutines by role and infer worker settings."""
    report = TemporalReport()
    if detect_profile_kind(profile) != ProfileKind.GOROUTINE.value:
        report.warnings.append(NOT_GOROUTINE_WARNING)

    index = find_sample_index(profile, GOROUTINE_SAMPLE_TYPES)
    counts: Dict[str, int] = {name: 0 for name, _ in _COUNTERS}
    workflows: Dict[Tuple[str, str], _TypeInfo] = {}
    activities: Dict[str, _TypeInfo] = {}

    # ── Step 1: count roles ──────────────────────────────────────────
    for sample in profile.samples:
        count = goroutine_count(sample, index)
        report.total_goroutines += count

        frames = stack_frames(sample)
        joined = " | ".join(frames)
        matched = {name for name, rx in _COUNTERS if rx.search(joined)}
        for name in matched:
            counts[name] += count

        if _ACTIVITY_COUNTER in matched:
            name = activity_name(frames)
            if name:
                info = activities.get(name)
                if info is None:
                    activities[name] = _TypeInfo(
                        count, stack_signature(frames, policy.temporal_activity_frames),
                    )
                else:
                    info.count += count

        if _WORKFLOW_COUNTER in matched:
            name = workflow_name(frames)
            if name:
                key = (name, workflow_state(frames))
                info = workflows.get(key)
                if info is None:
                    workflows[key] = _TypeInfo(
                        count, stack_signature(frames, policy.temporal_workflow_frames),
                    )
                else:
                    info.count += count

    # ── Step 2: infer settings and rank breakdowns ───────────────────
    report.counts = TemporalCounts(**counts)
    report.inferred_settings = infer_settings(report.counts, policy)

    breakdown: List[TemporalWorkflowType] = [
        TemporalWorkflowType(name=name, state=state, count=info.count, sample_stack=info.sample_stack)
        for (name, state), info in workflows.items()
    ]
    breakdown.sort(key=lambda w: (-w.count, w.name, w.state))
    report.workflow_breakdown = breakdown

    report.activity_breakdown = sorted(
        (
            TemporalActivityType(name=name, count=info.count, sample_stack=info.sample_stack)
            for name, info in activities.items()
        ),
        key=lambda a: (-a.count, a.name),
    )

    if not any(counts.values()):
        report.warnings.append(NO_TEMPORAL_WARNING)

    logger.debug(
        "temporal: %d goroutines, %d workflow types, %d activity types",
        report.total_goroutines, len(report.workflow_breakdown), len(report.activity_breakdown),
    )
    return report
