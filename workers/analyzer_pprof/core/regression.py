"""
Regression — assert that matching functions stay under a percentage ceiling.

For each check, every function whose name matches the check's regex is a
candidate; the check's actual value is the highest flat_pct / cum_pct
among them (0 when nothing matches).  A check passes when
``actual ≤ max``; the report passes when every check does.
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Sequence

from analyzer_pprof.core.primitives import find_sample_index, flat_top
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import (
    RegressionCheckResult,
    RegressionCheckSpec,
    RegressionReport,
)

logger = logging.getLogger(__name__)

SUPPORTED_METRICS = ("flat_pct", "cum_pct")


def _validate(checks: Sequence[RegressionCheckSpec]) -> None:
    if not checks:
        raise ValueError("checks are required")
    for check in checks:
        if not check.function:
            raise ValueError("check function is required")
        metric = check.metric or "flat_pct"
        if metric not in SUPPORTED_METRICS:
            raise ValueError(
                f"unsupported metric {metric!r} (use flat_pct or cum_pct)"
            )
        try:
            re.compile(check.function)
        except re.error as exc:
            raise ValueError(f"invalid function pattern {check.function!r}: {exc}") from exc


def check_regressions(
    profile: Profile,
    checks: Sequence[RegressionCheckSpec],
    sample_type: Optional[str] = None,
) -> RegressionReport:
    """
    Evaluate *checks* against one sample column.

    Raises ValueError for empty checks, an empty function pattern, an
    invalid regex or an unsupported metric, before anything is computed.
    """
    _validate(checks)

    candidates = (sample_type,) if sample_type else ()
    index = find_sample_index(profile, candidates)
    report = RegressionReport()
    if profile.sample_types:
        report.sample_type = profile.sample_types[index].type
    if sample_type and report.sample_type != sample_type:
        report.warnings.append(
            f"sample type {sample_type!r} not found; using {report.sample_type!r}"
        )

    rows = flat_top(profile, index)

    for check in checks:
        metric = check.metric or "flat_pct"
        regex = re.compile(check.function)

        actual = 0.0
        matched: Optional[str] = None
        for row in rows:
            if not regex.search(row.name):
                continue
            value = getattr(row, metric)
            if matched is None or value > actual:
                actual, matched = value, row.name

        passed = actual <= check.max
        result = RegressionCheckResult(
            function=check.function,
            metric=metric,
            threshold=check.max,
            actual=actual,
            passed=passed,
            matched_function=matched,
        )
        if not passed:
            result.message = (
                f"{check.function} {metric} ({actual:.2f}%) exceeds "
                f"threshold ({check.max:.2f}%)"
            )
            report.passed = False
        report.checks.append(result)

    logger.debug("regression: %d checks, passed=%s", len(report.checks), report.passed)
    return report
