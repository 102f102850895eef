"""
Categorize — bucket goroutines by regex over their joined stack.

The category table is ordered: requested presets first (in request
order), then caller categories.  A caller category with the same name as
a preset category replaces it in place.  Each goroutine lands in the first
category whose regex matches ``" | ".join(frames)``; the rest are grouped
by a short stack signature.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from analyzer_pprof.core.goroutines import (
    GOROUTINE_SAMPLE_TYPES,
    NOT_GOROUTINE_WARNING,
    goroutine_count,
)
from analyzer_pprof.core.primitives import (
    SIGNATURE_SEPARATOR,
    ProfileKind,
    detect_profile_kind,
    find_sample_index,
    percentage,
    stack_frames,
    stack_signature,
)
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import (
    CategorizeReport,
    GoroutineCategoryEntry,
    UncategorizedStack,
)
from analyzer_pprof.policy.patterns import CATEGORY_PRESETS
from analyzer_pprof.policy.profile import AnalysisProfile

logger = logging.getLogger(__name__)


def list_category_presets() -> List[str]:
    return sorted(CATEGORY_PRESETS)


def get_category_preset(name: str) -> Optional[Dict[str, str]]:
    """Patterns of preset *name* (category → regex), or None if unknown."""
    preset = CATEGORY_PRESETS.get(name)
    if preset is None:
        return None
    return dict(preset)


@dataclass
class _Matcher:
    pattern: str
    regex: Pattern
    count: int = 0
    sample_stack: str = ""


def _compile(name: str, pattern: str, warnings: List[str]) -> Optional[Pattern]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        warnings.append(f"invalid pattern for {name}: {exc}")
        return None


def build_category_table(
    categories: Optional[Mapping[str, str]],
    presets: Sequence[str],
    warnings: List[str],
) -> Tuple[Dict[str, _Matcher], List[str]]:
    """
    Ordered name → matcher table plus the presets actually used.

    Raises ValueError for a caller category with an empty name or pattern.
    """
    categories = dict(categories or {})
    for name, pattern in categories.items():
        if not name:
            raise ValueError("category name must not be empty")
        if not pattern:
            raise ValueError(f"category {name!r} has an empty pattern")

    table: Dict[str, _Matcher] = {}
    presets_used: List[str] = []

    for preset_name in presets:
        preset = CATEGORY_PRESETS.get(preset_name)
        if preset is None:
            warnings.append(f"unknown preset: {preset_name}")
            continue
        if preset_name not in presets_used:
            presets_used.append(preset_name)
        for name, pattern in preset:
            regex = _compile(name, pattern, warnings)
            if regex is not None:
                table[name] = _Matcher(pattern=pattern, regex=regex)

    for name, pattern in categories.items():
        regex = _compile(name, pattern, warnings)
        if regex is not None:
            table[name] = _Matcher(pattern=pattern, regex=regex)

    if not table:
        presets_used = list_category_presets()
        for preset_name in presets_used:
            for name, pattern in CATEGORY_PRESETS[preset_name]:
                table[name] = _Matcher(pattern=pattern, regex=re.compile(pattern))

    return table, presets_used


def categorize_goroutines(
    profile: Profile,
    policy: AnalysisProfile,
    categories: Optional[Mapping[str, str]] = None,
    presets: Sequence[str] = (),
) -> CategorizeReport:
    """
    Count goroutines per category.

    Parameters
    ----------
    categories : Mapping[str, str], optional
        Caller categories, name → regex, in evaluation order.
    presets : Sequence[str]
        Preset groups to include ahead of the caller categories.  With no
        categories and no usable presets, every preset is used.
    """
    report = CategorizeReport()
    table, report.presets_used = build_category_table(categories, presets, report.warnings)

    if detect_profile_kind(profile) != ProfileKind.GOROUTINE.value:
        report.warnings.append(NOT_GOROUTINE_WARNING)

    index = find_sample_index(profile, GOROUTINE_SAMPLE_TYPES)
    uncategorized: Dict[str, int] = {}

    for sample in profile.samples:
        count = goroutine_count(sample, index)
        report.total_goroutines += count

        frames = stack_frames(sample)
        joined = SIGNATURE_SEPARATOR.join(frames)

        for matcher in table.values():
            if matcher.regex.search(joined):
                matcher.count += count
                if not matcher.sample_stack:
                    matcher.sample_stack = stack_signature(frames, policy.wait_reason_frames)
                break
        else:
            report.uncategorized += count
            signature = stack_signature(frames, policy.uncategorized_frames)
            if signature:
                uncategorized[signature] = uncategorized.get(signature, 0) + count

    entries = [
        GoroutineCategoryEntry(
            name=name,
            pattern=m.pattern,
            count=m.count,
            percent=percentage(m.count, report.total_goroutines),
            sample_stack=m.sample_stack,
        )
        for name, m in table.items()
        if m.count > 0
    ]
    # Stable: equal counts keep table order.
    entries.sort(key=lambda e: -e.count)
    report.categories = entries

    ranked = sorted(uncategorized.items(), key=lambda kv: (-kv[1], kv[0]))
    report.top_uncategorized = [
        UncategorizedStack(signature=sig, count=count)
        for sig, count in ranked[:policy.max_uncategorized]
    ]

    logger.debug(
        "categorize: %d categories, %d uncategorized",
        len(report.categories), report.uncategorized,
    )
    return report
