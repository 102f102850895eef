"""
Shared pytest fixtures for analyzer_pprof tests.

All fixtures are pure-Python — no Go toolchain, no protobuf decoding.
Profiles are built directly from the dataclass model with the helpers
below; stacks are written leaf first, exactly as pprof stores them.
"""
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from analyzer_pprof.core.profile import (
    Function,
    Line,
    Location,
    Mapping,
    Profile,
    Sample,
    ValueType,
)
from analyzer_pprof.policy.profile import AnalysisProfile

MB = 1024 * 1024

Frame = Union[str, Tuple[str, str, int]]


# ── Builders ─────────────────────────────────────────────────────────────────

def make_location(frame: Frame, loc_id: int = 0) -> Location:
    """A location from ``"name"`` or ``("name", "file.go", line)``."""
    if isinstance(frame, tuple):
        name, filename, line = frame
    else:
        name, filename, line = frame, "", 0
    return Location(
        id=loc_id,
        lines=[Line(function=Function(name=name, filename=filename), line=line)],
    )


def make_sample(
    values: Sequence[int],
    frames: Sequence[Frame],
    labels: Optional[Dict[str, List[str]]] = None,
) -> Sample:
    return Sample(
        values=list(values),
        locations=[make_location(f, i + 1) for i, f in enumerate(frames)],
        labels=dict(labels or {}),
    )


def make_profile(
    sample_types: Sequence[Tuple[str, str]],
    samples: Sequence[Sample],
    **kwargs,
) -> Profile:
    return Profile(
        sample_types=[ValueType(type=t, unit=u) for t, u in sample_types],
        samples=list(samples),
        **kwargs,
    )


CPU_TYPES = [("samples", "count"), ("cpu", "nanoseconds")]
HEAP_TYPES = [
    ("alloc_objects", "count"),
    ("alloc_space", "bytes"),
    ("inuse_objects", "count"),
    ("inuse_space", "bytes"),
]
MUTEX_TYPES = [("contentions", "count"), ("delay", "nanoseconds")]
GOROUTINE_TYPES = [("goroutine", "count")]


def cpu_sample(nanos: int, frames: Sequence[Frame]) -> Sample:
    return make_sample([nanos // 10_000_000, nanos], frames)


def heap_sample(alloc_bytes: int, inuse_bytes: int, frames: Sequence[Frame]) -> Sample:
    return make_sample([1, alloc_bytes, 1, inuse_bytes], frames)


def make_cpu_profile(samples: Sequence[Sample], **kwargs) -> Profile:
    """CPU profile whose default column is the nanosecond one."""
    return make_profile(CPU_TYPES, samples, default_sample_type="cpu", **kwargs)


def mutex_sample(contentions: int, delay: int, frames: Sequence[Frame]) -> Sample:
    return make_sample([contentions, delay], frames)


CHAN_RECV_STACK = [
    "runtime.gopark",
    "runtime.chanrecv",
    "runtime.chanrecv1",
    "github.com/acme/svc/worker.(*Pool).wait",
    "github.com/acme/svc/worker.(*Pool).run",
    "github.com/acme/svc/worker.(*Pool).loop",
    "github.com/acme/svc/worker.(*Pool).serve",
    "github.com/acme/svc/worker.(*Pool).Start.func1",
    "runtime.goexit",
]


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def policy() -> AnalysisProfile:
    return AnalysisProfile.v0()


@pytest.fixture
def cpu_profile() -> Profile:
    """60% of CPU under OpenTelemetry, 40% in plain application code."""
    return make_profile(
        CPU_TYPES,
        [
            cpu_sample(600_000_000, [
                "go.opentelemetry.io/otel/sdk/trace.(*recordingSpan).End",
                "github.com/acme/svc/api.(*Server).handle",
                "main.main",
            ]),
            cpu_sample(400_000_000, [
                "github.com/acme/svc/api.compute",
                "github.com/acme/svc/api.(*Server).handle",
                "main.main",
            ]),
        ],
        default_sample_type="cpu",
        period_type=ValueType(type="cpu", unit="nanoseconds"),
        period=10_000_000,
        duration_nanos=30_000_000_000,
    )


@pytest.fixture
def heap_profile() -> Profile:
    """2048MB allocated, 100MB in use, libc Xmalloc on the hottest stack."""
    return make_profile(
        HEAP_TYPES,
        [
            heap_sample(1536 * MB, 60 * MB, [
                "runtime.mallocgc",
                "modernc.org/libc.Xmalloc",
                "github.com/acme/svc/store.(*DB).Query",
                "main.main",
            ]),
            heap_sample(512 * MB, 40 * MB, [
                "runtime.mallocgc",
                "runtime.makeslice",
                "github.com/acme/svc/api.decode",
                "main.main",
            ]),
        ],
        default_sample_type="inuse_space",
        duration_nanos=60_000_000_000,
        comments=["go version go1.22.3 linux/amd64"],
        mappings=[Mapping(id=1, file="/app/svc", build_id="abc123")],
    )


@pytest.fixture
def libc_cpu_profile() -> Profile:
    return make_profile(
        CPU_TYPES,
        [
            cpu_sample(500_000_000, [
                "modernc.org/libc.Xmalloc",
                "github.com/acme/svc/store.(*DB).Query",
            ]),
            cpu_sample(500_000_000, ["github.com/acme/svc/api.compute"]),
        ],
        default_sample_type="cpu",
        period=10_000_000,
    )


@pytest.fixture
def mutex_profile() -> Profile:
    """Three lock sites; the cache lock holds 40% of total delay."""
    return make_profile(
        MUTEX_TYPES,
        [
            mutex_sample(10, 400, [
                ("sync.(*Mutex).Lock", "sync/mutex.go", 81),
                ("github.com/acme/svc/cache.(*Cache).Get", "cache.go", 42),
                ("main.main", "main.go", 10),
            ]),
            mutex_sample(20, 350, [
                ("sync.(*Mutex).Lock", "sync/mutex.go", 81),
                ("github.com/acme/svc/queue.(*Queue).Push", "queue.go", 17),
            ]),
            mutex_sample(5, 250, [
                ("sync.(*RWMutex).RLock", "sync/rwmutex.go", 63),
                ("github.com/acme/svc/index.Lookup", "index.go", 99),
            ]),
        ],
        default_sample_type="delay",
    )


@pytest.fixture
def goroutine_profile() -> Profile:
    """1500 goroutines parked on the same channel receive, plus a few others."""
    return make_profile(
        GOROUTINE_TYPES,
        [
            make_sample([1500], CHAN_RECV_STACK),
            make_sample([3], [
                "runtime.gopark",
                "runtime.selectgo",
                "github.com/acme/svc/api.(*Server).loop",
            ]),
            make_sample([2], [
                "runtime.gopark",
                "runtime.netpollblock",
                "internal/poll.runtime_pollWait",
                "internal/poll.(*FD).Read",
                "net.(*conn).Read",
            ]),
        ],
    )
