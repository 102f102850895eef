"""
Profile — in-memory model of a parsed pprof profile.

Mirrors the shape of the pprof ``profile.proto`` message after symbolization:
sample types, samples with one value per sample type, and an ordered stack
of locations (leaf first) whose lines name functions.

The model is read-only input for every detector.  Nothing in ``core/``
mutates a profile; all aggregation happens in fresh local structures.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class ValueType:
    """A named, unit-tagged sample column, e.g. ``alloc_space``/``bytes``."""
    type: str
    unit: str = ""


@dataclass(frozen=True)
class Function:
    name: str = ""
    system_name: str = ""
    filename: str = ""
    start_line: int = 0


@dataclass(frozen=True)
class Line:
    function: Optional[Function] = None
    line: int = 0


@dataclass(frozen=True)
class Location:
    """One stack frame.  Inlined calls produce several lines, innermost first."""
    id: int = 0
    address: int = 0
    lines: List[Line] = field(default_factory=list)


@dataclass(frozen=True)
class Sample:
    values: List[int] = field(default_factory=list)
    locations: List[Location] = field(default_factory=list)
    labels: Dict[str, List[str]] = field(default_factory=dict)
    num_labels: Dict[str, List[int]] = field(default_factory=dict)


@dataclass(frozen=True)
class Mapping:
    id: int = 0
    file: str = ""
    build_id: str = ""


@dataclass(frozen=True)
class Profile:
    """A parsed profile snapshot."""

    sample_types: List[ValueType] = field(default_factory=list)
    samples: List[Sample] = field(default_factory=list)

    default_sample_type: str = ""
    period_type: Optional[ValueType] = None
    period: int = 0

    time_nanos: int = 0
    duration_nanos: int = 0

    comments: List[str] = field(default_factory=list)
    mappings: List[Mapping] = field(default_factory=list)
