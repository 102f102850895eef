"""
Patterns — versioned, ordered pattern tables for frame classification.

Every table is a tuple evaluated top to bottom; the first matching row
wins wherever a detector attributes a sample to exactly one bucket.

Tables:
  OVERHEAD_CATEGORIES      infrastructure / observability libraries
  OFFHEAP_SIGNATURES       native allocators, SQLite drivers, compressors
  CODE_SCAN_PATTERNS       source patterns that confirm an off-heap finding
  LOCK_PRIMITIVES          frames that mark a lock acquisition
  WAIT_REASONS             goroutine wait classification
  RUNTIME_ALLOC_PREFIXES   allocator frames skipped at the leaf
  CATEGORY_PRESETS         goroutine categorization regex groups
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

PATTERN_TABLE_VERSION = "1.0"


# ── Overhead categories ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class OverheadCategory:
    name: str
    description: str
    patterns: Tuple[str, ...]
    suggestion: Optional[str] = None

    def matches(self, function: str) -> bool:
        return any(p in function for p in self.patterns)


OVERHEAD_CATEGORIES: Tuple[OverheadCategory, ...] = (
    OverheadCategory(
        name="OpenTelemetry Tracing",
        description="OTel span creation, attributes, and export",
        patterns=("go.opentelemetry.io/otel", "opentelemetry"),
        suggestion="Consider reducing trace sampling rate or limiting span attributes",
    ),
    OverheadCategory(
        name="Logging (zap)",
        description="Zap logger allocations and writes",
        patterns=("go.uber.org/zap", "zapcore"),
        suggestion="Consider adjusting log level or using sampling for high-frequency logs",
    ),
    OverheadCategory(
        name="Logging (logrus)",
        description="Logrus logger allocations",
        patterns=("github.com/sirupsen/logrus",),
        suggestion="Consider switching to zap for better performance, or reduce log verbosity",
    ),
    OverheadCategory(
        name="Prometheus Metrics",
        description="Prometheus metric collection and export",
        patterns=("github.com/prometheus/", "prometheus/client_golang"),
        suggestion="Review metric cardinality; high-cardinality labels cause memory growth",
    ),
    OverheadCategory(
        name="gRPC Framework",
        description="gRPC infrastructure (interceptors, encoding, transport)",
        patterns=("google.golang.org/grpc", "grpc-ecosystem"),
        suggestion="This is typically unavoidable for gRPC services; focus on application code",
    ),
    OverheadCategory(
        name="Protobuf Serialization",
        description="Protocol buffer marshaling/unmarshaling",
        patterns=("google.golang.org/protobuf", "github.com/golang/protobuf"),
        suggestion="Consider message pooling or lazy unmarshaling for large messages",
    ),
    OverheadCategory(
        name="JSON Serialization",
        description="JSON encoding/decoding",
        patterns=("encoding/json", "github.com/json-iterator", "github.com/goccy/go-json"),
        suggestion="Consider using json-iterator or code generation for hot paths",
    ),
    OverheadCategory(
        name="HTTP Framework",
        description="HTTP server/client infrastructure",
        patterns=("net/http", "golang.org/x/net/http2"),
    ),
    OverheadCategory(
        name="Context Operations",
        description="Context value storage and propagation",
        patterns=("context.WithValue", "context.WithCancel", "context.WithDeadline"),
        suggestion="Reduce context.WithValue usage; consider alternative patterns for passing data",
    ),
    OverheadCategory(
        name="Runtime/GC",
        description="Go runtime and garbage collection",
        patterns=(
            "runtime.mallocgc",
            "runtime.gcBgMarkWorker",
            "runtime.scanobject",
            "runtime.markroot",
        ),
        suggestion="High GC overhead suggests allocation pressure; review allocation hot spots",
    ),
)


# ── Off-heap signatures ──────────────────────────────────────────────────────

SIG_SQLITE = "SQLite"
SIG_LIBC_ALLOC = "libc-alloc"
SIG_LIBC_OPS = "libc-ops"
SIG_COMPRESSION = "Compression"


@dataclass(frozen=True)
class OffHeapSignature:
    pattern: str      # lowercase substring
    group: str
    label: str


OFFHEAP_SIGNATURES: Tuple[OffHeapSignature, ...] = (
    OffHeapSignature("glebarez/go-sqlite", SIG_SQLITE, "go-sqlite"),
    OffHeapSignature("mattn/go-sqlite", SIG_SQLITE, "go-sqlite3 (CGO)"),
    OffHeapSignature("modernc.org/sqlite", SIG_SQLITE, "modernc SQLite"),
    OffHeapSignature("modernc.org/libc.(*tls).alloc", SIG_LIBC_ALLOC, "libc.(*TLS).Alloc"),
    OffHeapSignature("modernc.org/libc.xmalloc", SIG_LIBC_ALLOC, "libc Xmalloc"),
    OffHeapSignature("modernc.org/libc.xrealloc", SIG_LIBC_ALLOC, "libc Xrealloc"),
    OffHeapSignature("modernc.org/libc.xmemcpy", SIG_LIBC_OPS, "libc Xmemcpy"),
    OffHeapSignature("modernc.org/libc.xmemcmp", SIG_LIBC_OPS, "libc Xmemcmp"),
    OffHeapSignature("modernc.org/libc.(*tls).free", SIG_LIBC_OPS, "libc.(*TLS).Free"),
    OffHeapSignature("klauspost/compress/zstd", SIG_COMPRESSION, "zstd"),
    OffHeapSignature("klauspost/compress/zlib", SIG_COMPRESSION, "zlib"),
    OffHeapSignature("klauspost/compress/gzip", SIG_COMPRESSION, "gzip"),
)

CGO_PATTERNS: Tuple[str, ...] = ("cgo", "_cfunc", "_cgo")
FRAGMENTATION_PATTERNS: Tuple[str, ...] = ("runtime.mallocgc", "mcache", "mspan")


# ── Code scan ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CodePattern:
    category: str
    regex: str
    explanation: str


SQLITE_CODE_PATTERNS: Tuple[CodePattern, ...] = (
    CodePattern(
        SIG_SQLITE,
        r"""temp_store\s*=\s*['"]?MEMORY['"]?""",
        "temp_store=MEMORY causes SQLite to allocate temp tables in memory outside Go heap",
    ),
    CodePattern(
        SIG_SQLITE,
        r"PRAGMA\s+temp_store\s*=\s*2",
        "PRAGMA temp_store=2 is equivalent to MEMORY mode",
    ),
    CodePattern(
        SIG_SQLITE,
        r"temp_store=memory",
        "temp_store=memory in connection string allocates outside Go heap",
    ),
    CodePattern(
        SIG_SQLITE,
        r"_pragma=temp_store",
        "SQLite pragma configuration - check if temp_store is set to MEMORY",
    ),
)

COMPRESSION_CODE_PATTERNS: Tuple[CodePattern, ...] = (
    CodePattern(
        SIG_COMPRESSION,
        r"zstd\.NewWriter\(",
        "zstd.NewWriter creates encoder with internal buffers - ensure Close() is called and consider pooling",
    ),
    CodePattern(
        SIG_COMPRESSION,
        r"zstd\.NewReader\(",
        "zstd.NewReader creates decoder with internal buffers - ensure Close() is called",
    ),
    CodePattern(
        SIG_COMPRESSION,
        r"gzip\.NewWriter\(",
        "gzip.NewWriter - ensure Close() is called to release buffers",
    ),
)


# ── Contention ───────────────────────────────────────────────────────────────

LOCK_PRIMITIVES: Tuple[str, ...] = (
    "sync.(*mutex).lock",
    "sync.(*rwmutex).",
    "runtime.semacquire",
    "runtime.semacquiremutex",
    "semaphore.(*weighted).acquire",
)

RUNTIME_FRAME_PREFIXES: Tuple[str, ...] = ("runtime.", "sync.")


# ── Goroutine wait reasons ───────────────────────────────────────────────────

WAIT_REASONS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("chan receive", ("runtime.chanrecv",)),
    ("chan send", ("runtime.chansend",)),
    ("select", ("runtime.selectgo",)),
    ("mutex", ("sync.(*mutex).lock", "runtime.semacquire")),
    ("rwmutex", ("sync.(*rwmutex).", "runtime.semacquiremutex")),
    ("cond", ("sync.(*cond).wait",)),
    ("sleep", ("time.sleep", "runtime.usleep")),
    ("timer", ("runtime.timerproc", "time.(*timer)", "runtime.runtimer")),
    ("io wait", ("net.(*polldesc).wait", "internal/poll")),
    ("network poll", ("runtime.netpoll",)),
    ("syscall", ("syscall.", "runtime.cgocall")),
    ("parked", ("runtime.gopark",)),
)

UNKNOWN_REASON = "unknown"
STATE_LABEL_KEYS: Tuple[str, ...] = ("state", "status", "goroutine", "goroutine_state")

REASON_STATES: Dict[str, str] = {
    "syscall": "syscall",
    "chan receive": "waiting",
    "chan send": "waiting",
    "select": "waiting",
    "mutex": "waiting",
    "rwmutex": "waiting",
    "cond": "waiting",
    "io wait": "waiting",
    "sleep": "waiting",
    "timer": "waiting",
    "network poll": "waiting",
    "parked": "waiting",
}


# ── Allocation paths ─────────────────────────────────────────────────────────

RUNTIME_ALLOC_PREFIXES: Tuple[str, ...] = (
    "runtime.mallocgc",
    "runtime.newobject",
    "runtime.makeslice",
    "runtime.makemap",
    "runtime.mapassign",
    "runtime.growslice",
    "runtime.concatstrings",
    "runtime.rawstring",
    "runtime.slicebytetostring",
    "runtime.stringtoslicebyte",
)


# ── Temporal SDK workers ─────────────────────────────────────────────────────

# Counter name → regex over the " | "-joined stack.  A stack may bump
# several counters (a poller blocked in gRPC matches both poller rows).
TEMPORAL_COUNTERS: Tuple[Tuple[str, str], ...] = (
    ("activity_pollers_do_poll", r"activityTaskPoller.*PollTask|basePoller.*doPoll.*activityTaskPoller"),
    ("activity_pollers_in_grpc", r"PollActivityTaskQueue"),
    ("workflow_pollers_do_poll", r"workflowTaskPoller.*PollTask|basePoller.*doPoll.*workflowTaskPoller"),
    ("workflow_pollers_in_grpc", r"PollWorkflowTaskQueue"),
    ("local_activity_pollers", r"localActivityTaskPoller.*PollTask"),
    ("activities_executing", r"activityTaskPoller.*ProcessTask"),
    ("workflows_cached", r"coroutineState.*(?:initialYield|yield)|syncWorkflowDefinition.*Execute"),
    ("local_activities_executing", r"localActivityTaskPoller.*ProcessTask"),
    ("sessions_active", r"sessionEnvironmentImpl"),
    ("heartbeat_goroutines", r"temporalInvoker.*Heartbeat|internal\.heartbeat"),
    ("grpc_streams", r"http2Client.*reader|http2.*readLoop"),
    ("task_dispatchers", r"baseWorker.*runTaskDispatcher"),
    ("eager_dispatchers", r"baseWorker.*runEagerTaskDispatcher"),
)

TEMPORAL_SDK_PACKAGE = "go.temporal.io/sdk"

# First marker found in the stack names the workflow's state.
WORKFLOW_STATES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("selector", ("selectorImpl.Select",)),
    ("awaiting_future", ("decodeFutureImpl.Get", "channelImpl.Receive")),
    ("executing", ("Execute",)),
)


# ── Goroutine categorization presets ─────────────────────────────────────────

CATEGORY_PRESETS: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "temporal": (
        ("temporal_activity_poller", r"activityTaskPoller.*(PollTask|doPoll)"),
        ("temporal_workflow_poller", r"workflowTaskPoller.*(PollTask|doPoll)"),
        ("temporal_activity_exec", r"activityTaskPoller.*ProcessTask"),
        ("temporal_workflow_cached", r"coroutineState\.(initialYield|yield)"),
        ("temporal_local_activity", r"localActivityTaskPoller"),
        ("temporal_heartbeat", r"temporalInvoker.*Heartbeat|internal\.heartbeat"),
        ("temporal_task_dispatcher", r"baseWorker.*runTaskDispatcher"),
        ("temporal_eager_dispatcher", r"baseWorker.*runEagerTaskDispatcher"),
    ),
    "grpc": (
        ("grpc_server_handler", r"grpc\..*\.Serve|grpc\.handleStream"),
        ("grpc_client_stream", r"grpc\..*clientStream|ClientConn.*Invoke"),
        ("grpc_http2_reader", r"http2Client.*reader|http2.*readLoop"),
        ("grpc_http2_writer", r"loopyWriter.*run"),
        ("grpc_keepalive", r"http2Client.*keepalive"),
        ("grpc_callback_serializer", r"grpcsync\..*CallbackSerializer"),
    ),
    "http": (
        ("http_server", r"http\..*Serve|http\.serverHandler"),
        ("http_client", r"http\..*RoundTrip|persistConn\.readLoop"),
        ("http2_client", r"http2\..*ClientConn|http2\..*readLoop"),
    ),
    "database": (
        ("sql_connection", r"database/sql\.(.*DB|.*Conn)"),
        ("postgres", r"pgx|pq\.|lib/pq"),
        ("mongodb", r"mongo-driver"),
        ("redis", r"go-redis|redigo"),
    ),
    "runtime": (
        ("runtime_gc", r"runtime\.gc|runtime\.bgscavenge"),
        ("runtime_sysmon", r"runtime\.sysmon"),
        ("runtime_netpoll", r"runtime\.netpoll"),
        ("runtime_timer", r"runtime\.timerproc|runtime\.runTimer"),
        ("signal_handler", r"os/signal\.loop|signal_recv"),
    ),
    "sync": (
        ("sync_mutex", r"sync\.\(.*Mutex\)"),
        ("sync_cond", r"sync\.\(.*Cond\)"),
        ("sync_waitgroup", r"sync\.\(.*WaitGroup\)"),
        ("sync_pool", r"sync\.Pool"),
        ("channel_recv", r"runtime\.chanrecv"),
        ("channel_send", r"runtime\.chansend"),
        ("select", r"runtime\.selectgo"),
    ),
    "observability": (
        ("datadog_profiler", r"dd-trace-go.*profiler"),
        ("datadog_tracer", r"dd-trace-go.*tracer"),
        ("otel_exporter", r"opentelemetry.*exporter"),
        ("prometheus", r"prometheus.*"),
    ),
}
