"""
Primitives — shared helpers every detector builds on.

Responsibilities:
  - Locate a sample-value column by candidate names (with fallbacks that
    always yield a usable index).
  - Read a sample value with a fallback when the column is out of range.
  - Walk a sample's stack leaf → root and build bounded stack signatures.
  - Classify a profile's kind from its sample-type metadata.
  - Compute per-function flat / cumulative totals (the in-process
    equivalent of ``pprof -top``).
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from analyzer_pprof.core.profile import Profile, Sample

SIGNATURE_SEPARATOR = " | "


class ProfileKind(str, Enum):
    CPU = "cpu"
    HEAP = "heap"
    GOROUTINE = "goroutine"
    MUTEX = "mutex"
    BLOCK = "block"
    UNKNOWN = "unknown"


# ── Sample columns ───────────────────────────────────────────────────────────

def find_sample_index(profile: Profile, candidates: Sequence[str]) -> int:
    """
    Return the first sample-type index whose type equals a candidate.

    Candidate order wins over sample-type order.  Falls back to the
    profile's declared default sample type, then to index 0.
    """
    for name in candidates:
        for idx, st in enumerate(profile.sample_types):
            if st.type == name:
                return idx
    if profile.default_sample_type:
        for idx, st in enumerate(profile.sample_types):
            if st.type == profile.default_sample_type:
                return idx
    return 0


def find_sample_index_exact(profile: Profile, name: str) -> int:
    """Index of the sample type called *name*, or -1."""
    for idx, st in enumerate(profile.sample_types):
        if st.type == name:
            return idx
    return -1


def sample_unit(profile: Profile, index: int, fallback: str = "") -> str:
    if 0 <= index < len(profile.sample_types):
        unit = profile.sample_types[index].unit
        if unit:
            return unit
    return fallback


def sample_value(sample: Sample, index: int, default: int = 1) -> int:
    """
    ``sample.values[index]``; out of range falls back to ``values[0]``;
    a sample without values counts as *default*.
    """
    if 0 <= index < len(sample.values):
        return sample.values[index]
    if sample.values:
        return sample.values[0]
    return default


def column_total(profile: Profile, index: int) -> int:
    """Sum of one sample column across the profile (missing values count 0)."""
    return sum(sample_value(s, index, default=0) for s in profile.samples)


# ── Stacks ───────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FrameInfo:
    function: str
    file: str = ""
    line: int = 0

    @property
    def source_location(self) -> str:
        if self.file and self.line > 0:
            return f"{self.file}:{self.line}"
        return ""


def stack_frame_infos(sample: Sample) -> List[FrameInfo]:
    """Resolvable frames leaf → root, one (innermost) function per location."""
    frames: List[FrameInfo] = []
    for loc in sample.locations:
        for line in loc.lines:
            if line.function is None or not line.function.name:
                continue
            frames.append(
                FrameInfo(
                    function=line.function.name,
                    file=line.function.filename,
                    line=line.line,
                )
            )
            break
    return frames


def stack_frames(sample: Sample) -> List[str]:
    """Function names leaf → root, skipping locations with no function."""
    return [f.function for f in stack_frame_infos(sample)]


def stack_signature(frames: Sequence[str], max_frames: int = 8) -> str:
    """
    Join the first *max_frames* names with ``" | "``.

    An empty stack yields ``""``; callers treat that as unattributable.
    """
    if not frames:
        return ""
    if max_frames > 0:
        frames = frames[:max_frames]
    return SIGNATURE_SEPARATOR.join(frames)


def sample_label(sample: Sample, keys: Iterable[str]) -> str:
    """First value of the first present label among *keys*, else ``""``."""
    for key in keys:
        values = sample.labels.get(key)
        if values:
            return values[0]
    return ""


# ── Profile kind ─────────────────────────────────────────────────────────────

_HEAP_TYPES = frozenset({"alloc_space", "alloc_objects", "inuse_space", "inuse_objects"})
_CPU_TYPES = frozenset({"samples", "cpu"})
_GOROUTINE_TYPES = frozenset({"goroutine", "goroutines"})
_MUTEX_TYPES = frozenset({"delay", "contentions"})


def detect_profile_kind(profile: Profile) -> str:
    """
    Classify from sample-type names; the first deciding sample type wins.

    Advisory only: detectors warn on a mismatch but never fail.
    """
    for st in profile.sample_types:
        if st.type in _HEAP_TYPES:
            return ProfileKind.HEAP.value
        if st.type in _CPU_TYPES:
            return ProfileKind.CPU.value
        if st.type in _GOROUTINE_TYPES:
            return ProfileKind.GOROUTINE.value
        if st.type in _MUTEX_TYPES:
            return ProfileKind.MUTEX.value
    return ProfileKind.UNKNOWN.value


# ── Formatting ───────────────────────────────────────────────────────────────

def format_value(value: float, unit: str) -> str:
    """Human-readable value: binary multiples for bytes, SI for nanoseconds."""
    if unit == "bytes":
        if value >= 1 << 30:
            return f"{value / (1 << 30):.2f}GB"
        if value >= 1 << 20:
            return f"{value / (1 << 20):.2f}MB"
        if value >= 1 << 10:
            return f"{value / (1 << 10):.2f}KB"
        return f"{int(value)}B"
    if unit == "nanoseconds":
        if value >= 1e9:
            return f"{value / 1e9:.2f}s"
        if value >= 1e6:
            return f"{value / 1e6:.2f}ms"
        if value >= 1e3:
            return f"{value / 1e3:.2f}us"
        return f"{int(value)}ns"
    return f"{int(value)} {unit}"


def percentage(part: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return part / total * 100


# ── Flat / cumulative function totals ────────────────────────────────────────

@dataclass(frozen=True)
class FunctionStat:
    """One row of a flat-sorted top table."""
    name: str
    flat: int
    cum: int
    flat_pct: float
    cum_pct: float
    rank: int


def function_totals(
    profile: Profile,
    index: int,
) -> Tuple[int, Dict[str, int], Dict[str, int]]:
    """
    Per-function flat and cumulative sums for one column.

    Flat credits the leaf frame; cumulative credits every distinct
    function on the stack once.

    Returns (total, flat_by_function, cum_by_function).
    """
    total = 0
    flat: Dict[str, int] = {}
    cum: Dict[str, int] = {}

    for sample in profile.samples:
        value = sample_value(sample, index, default=0)
        if value == 0:
            continue
        total += value
        frames = stack_frames(sample)
        if not frames:
            continue
        flat[frames[0]] = flat.get(frames[0], 0) + value
        for name in dict.fromkeys(frames):
            cum[name] = cum.get(name, 0) + value

    return total, flat, cum


def flat_top(
    profile: Profile,
    index: int,
    node_count: Optional[int] = None,
) -> List[FunctionStat]:
    """
    Functions ranked by flat value (ties: cum descending, then name).

    Every function that appears on a stack gets a row, so functions with
    zero flat value sort last.  Ranks are 1-based row positions.
    """
    total, flat, cum = function_totals(profile, index)

    names = sorted(cum, key=lambda n: (-flat.get(n, 0), -cum[n], n))
    if node_count is not None and node_count > 0:
        names = names[:node_count]

    return [
        FunctionStat(
            name=name,
            flat=flat.get(name, 0),
            cum=cum[name],
            flat_pct=percentage(flat.get(name, 0), total),
            cum_pct=percentage(cum[name], total),
            rank=pos + 1,
        )
        for pos, name in enumerate(names)
    ]
