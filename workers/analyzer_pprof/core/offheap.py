"""
Off-heap — suspicions about memory living outside the managed Go heap.

Two layers:
  1. Evidence collection (collect_memory_evidence) — turns the heap, CPU
     and goroutine profiles into MB figures and lowercase function-name
     corpora.
  2. Assessment (assess_memory) — pure function of that evidence: matches
     the off-heap signature table, grades native-allocator evidence with
     ``offheap_tier``, checks goroutine stacks and RSS mismatch, and
     optionally confirms findings with a source scan.

Confidence only moves upward once assigned.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from analyzer_pprof.core.code_scan import scan_repository
from analyzer_pprof.core.goroutines import count_goroutines
from analyzer_pprof.core.primitives import (
    column_total,
    find_sample_index_exact,
    stack_frames,
)
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.io.schema import CodeFinding, MemoryReport, Suspicion
from analyzer_pprof.policy.patterns import (
    CGO_PATTERNS,
    FRAGMENTATION_PATTERNS,
    OFFHEAP_SIGNATURES,
    SIG_COMPRESSION,
    SIG_LIBC_ALLOC,
    SIG_LIBC_OPS,
    SIG_SQLITE,
)
from analyzer_pprof.policy.profile import AnalysisProfile
from analyzer_pprof.policy.verdict import (
    Confidence,
    Severity,
    goroutine_stack_severity,
    is_high_churn,
    offheap_tier,
    upgrade_confidence,
)

logger = logging.getLogger(__name__)

MIB = 1024 * 1024

CAT_SQLITE = "SQLite Off-Heap Memory"
CAT_NATIVE = "Native Allocator Memory"
CAT_COMPRESSION = "Compression Buffers"
CAT_CGO = "CGO Allocations"
CAT_GOROUTINES = "Goroutine Stacks"
CAT_RSS = "RSS/Heap Mismatch"

# Suspicion category → code-finding category that can confirm it.
_CONFIRMING_FINDINGS = {
    CAT_SQLITE: SIG_SQLITE,
    CAT_NATIVE: SIG_SQLITE,
    CAT_COMPRESSION: SIG_COMPRESSION,
}

_SQLITE_DESCRIPTIONS = {
    1: "SQLite is allocating memory outside Go heap via libc (likely temp_store=MEMORY)",
    2: "SQLite with libc allocations detected - probable off-heap memory usage",
    3: "SQLite with high allocation churn and libc patterns - probable off-heap memory",
    4: "SQLite detected with high allocation churn - possible off-heap memory via temp_store=MEMORY",
    5: "SQLite detected - check temp_store setting if experiencing memory issues",
}

_NATIVE_DESCRIPTIONS = {
    1: "Native allocator is allocating memory outside Go heap under heavy churn",
    2: "Native allocator frames on the CPU profile - probable off-heap memory usage",
    3: "Native allocator patterns with high allocation churn - probable off-heap memory",
    4: "High allocation churn alongside native allocator frames - possible off-heap memory",
    5: "modernc.org/libc allocations detected without obvious source",
}

_SQLITE_STRONG_RECS = (
    "CRITICAL: Check for PRAGMA temp_store=MEMORY in SQLite connections",
    "Use PRAGMA temp_store=FILE or temp_store=DEFAULT to use disk-based temp storage",
    "Monitor container RSS directly - Go heap metrics won't show this memory",
)
_SQLITE_WEAK_RECS = (
    "Check SQLite PRAGMA temp_store setting - MEMORY mode allocates outside Go heap",
    "Consider PRAGMA temp_store=FILE if experiencing memory issues",
)
_NATIVE_RECS = (
    "Identify which library calls into modernc.org/libc - its allocations bypass the Go heap",
    "Monitor container RSS directly - Go heap metrics won't show this memory",
)
_COMPRESSION_RECS = (
    "Reuse compression encoders/decoders instead of creating new ones",
    "Call encoder.Close() promptly to release internal buffers",
)
_CGO_RECS = (
    "CGO allocations are not tracked by Go heap - use system memory profilers",
    "Consider pure-Go alternatives if CGO memory is problematic",
)
_GOROUTINE_RECS = (
    "Review goroutine leaks - use the goroutine analysis to identify blocked goroutines",
    "Consider using worker pools instead of unbounded goroutine creation",
)
_RSS_RECS = (
    "Large RSS/heap mismatch indicates memory outside Go heap control",
    "Common causes: SQLite temp_store=MEMORY, CGO allocations, mmap'd files, MADV_FREE pages",
    "Set GODEBUG=madvdontneed=1 to release memory to OS immediately",
    "Set GOMEMLIMIT to trigger GC before hitting container limits",
)


# ── Evidence ─────────────────────────────────────────────────────────────────

@dataclass
class MemoryEvidence:
    """Inputs to the off-heap assessment, already reduced from profiles."""

    heap_inuse_mb: float = 0.0
    heap_alloc_mb: float = 0.0
    goroutine_count: int = 0

    # Lowercase function names seen on heap (in-use + alloc) stacks.
    heap_corpus: Set[str] = field(default_factory=set)
    # None when no CPU profile was supplied.
    cpu_corpus: Optional[Set[str]] = None

    has_goroutine_profile: bool = False
    container_rss_mb: Optional[float] = None

    warnings: List[str] = field(default_factory=list)


def _column_mb(profile: Profile, name: str) -> Optional[float]:
    idx = find_sample_index_exact(profile, name)
    if idx < 0:
        return None
    total = column_total(profile, idx)
    return total / MIB


def _corpus(profile: Profile) -> Set[str]:
    names: Set[str] = set()
    for sample in profile.samples:
        for frame in stack_frames(sample):
            names.add(frame.lower())
    return names


def collect_memory_evidence(
    heap_profile: Profile,
    cpu_profile: Optional[Profile] = None,
    goroutine_profile: Optional[Profile] = None,
    container_rss_mb: Optional[float] = None,
) -> MemoryEvidence:
    """Reduce the supplied profiles to ``MemoryEvidence``."""
    evidence = MemoryEvidence(container_rss_mb=container_rss_mb)

    inuse = _column_mb(heap_profile, "inuse_space")
    if inuse is None:
        evidence.warnings.append("inuse_space not found; heap in-use reported as 0")
    else:
        evidence.heap_inuse_mb = inuse

    alloc = _column_mb(heap_profile, "alloc_space")
    if alloc is None:
        evidence.warnings.append("Could not analyze alloc_space")
    else:
        evidence.heap_alloc_mb = alloc

    evidence.heap_corpus = _corpus(heap_profile)

    if cpu_profile is not None:
        evidence.cpu_corpus = _corpus(cpu_profile)
    else:
        evidence.warnings.append(
            "CPU profile not provided; native allocations cannot be confirmed"
        )

    if goroutine_profile is not None:
        evidence.has_goroutine_profile = True
        evidence.goroutine_count = count_goroutines(goroutine_profile)
    else:
        evidence.warnings.append(
            "goroutine profile not provided; goroutine stack usage not assessed"
        )

    if container_rss_mb is None:
        evidence.warnings.append(
            "container RSS not provided; RSS/heap mismatch not assessed"
        )

    return evidence


# ── Assessment ───────────────────────────────────────────────────────────────

def _contains(corpus: Optional[Set[str]], pattern: str) -> bool:
    if not corpus:
        return False
    return any(pattern in name for name in corpus)


def match_signatures(evidence: MemoryEvidence) -> Dict[str, Dict[str, bool]]:
    """
    Signature pattern → {"heap": bool, "cpu": bool} for patterns seen in
    either corpus.
    """
    found: Dict[str, Dict[str, bool]] = {}
    for sig in OFFHEAP_SIGNATURES:
        in_heap = _contains(evidence.heap_corpus, sig.pattern)
        in_cpu = _contains(evidence.cpu_corpus, sig.pattern)
        if in_heap or in_cpu:
            found[sig.pattern] = {"heap": in_heap, "cpu": in_cpu}
    return found


def _group_flags(found: Dict[str, Dict[str, bool]], group: str, where: str) -> bool:
    return any(
        found[sig.pattern][where]
        for sig in OFFHEAP_SIGNATURES
        if sig.group == group and sig.pattern in found
    )


def _native_suspicion(
    category: str,
    descriptions: Dict[int, str],
    evidence_text: str,
    alloc_in_heap: bool,
    alloc_in_cpu: bool,
    native_ops: bool,
    high_churn: bool,
    has_cpu: bool,
) -> Suspicion:
    tier = offheap_tier(alloc_in_heap, alloc_in_cpu, native_ops, high_churn)
    if not has_cpu:
        if tier.level in (3, 4):
            evidence_text += " (provide CPU profile for confirmation)"
        elif tier.level == 5:
            evidence_text += " (provide CPU profile for better analysis)"
    return Suspicion(
        category=category,
        description=descriptions[tier.level],
        severity=tier.severity.value,
        confidence=tier.confidence.value,
        evidence=evidence_text,
    )


def _assess_signatures(
    evidence: MemoryEvidence,
    policy: AnalysisProfile,
    report: MemoryReport,
) -> Set[str]:
    """Off-heap signature suspicions.  Returns the signature groups seen."""
    found = match_signatures(evidence)
    has_cpu = evidence.cpu_corpus is not None

    has_sqlite = _group_flags(found, SIG_SQLITE, "heap") or _group_flags(found, SIG_SQLITE, "cpu")
    alloc_in_heap = _group_flags(found, SIG_LIBC_ALLOC, "heap")
    alloc_in_cpu = _group_flags(found, SIG_LIBC_ALLOC, "cpu")
    has_alloc = alloc_in_heap or alloc_in_cpu
    has_ops = _group_flags(found, SIG_LIBC_OPS, "heap") or _group_flags(found, SIG_LIBC_OPS, "cpu")
    compressors = [
        sig.label for sig in OFFHEAP_SIGNATURES
        if sig.group == SIG_COMPRESSION and sig.pattern in found
    ]
    high_churn = is_high_churn(evidence.heap_alloc_mb, evidence.heap_inuse_mb, policy)

    parts: List[str] = []
    if has_sqlite:
        parts.append("SQLite in heap profile")
    if has_alloc:
        if alloc_in_cpu:
            parts.append("libc.Alloc in CPU profile (CONFIRMED off-heap allocation)")
        else:
            parts.append("libc.Alloc detected")
    if has_ops:
        parts.append("libc memory ops detected")
    if high_churn:
        parts.append(
            f"HIGH CHURN: {evidence.heap_alloc_mb:.0f}MB allocated, "
            f"only {evidence.heap_inuse_mb:.0f}MB in-use"
        )
    evidence_text = "; ".join(parts)

    if has_sqlite:
        suspicion = _native_suspicion(
            CAT_SQLITE, _SQLITE_DESCRIPTIONS, evidence_text,
            alloc_in_heap, alloc_in_cpu, has_ops, high_churn, has_cpu,
        )
        report.suspicions.append(suspicion)
        if suspicion.confidence in (Confidence.CONFIRMED.value, Confidence.LIKELY.value):
            report.recommendations.extend(_SQLITE_STRONG_RECS)
        else:
            report.recommendations.extend(_SQLITE_WEAK_RECS)
    elif has_alloc or has_ops:
        suspicion = _native_suspicion(
            CAT_NATIVE, _NATIVE_DESCRIPTIONS, evidence_text,
            alloc_in_heap, alloc_in_cpu, has_ops, high_churn, has_cpu,
        )
        report.suspicions.append(suspicion)
        report.recommendations.extend(_NATIVE_RECS)

    if compressors:
        if high_churn:
            confidence, severity = Confidence.SUSPECTED, Severity.MEDIUM
            description = "Compression with high allocation churn - buffers may contribute to memory pressure"
        else:
            confidence, severity = Confidence.POSSIBLE, Severity.LOW
            description = "Compression library detected - may hold internal buffers"
        report.suspicions.append(Suspicion(
            category=CAT_COMPRESSION,
            description=description,
            severity=severity.value,
            confidence=confidence.value,
            evidence=f"Found: {', '.join(compressors)}",
        ))
        report.recommendations.extend(_COMPRESSION_RECS)

    groups: Set[str] = set()
    if has_sqlite:
        groups.add(SIG_SQLITE)
    if alloc_in_heap or alloc_in_cpu:
        groups.add(SIG_LIBC_ALLOC)
    if has_ops:
        groups.add(SIG_LIBC_OPS)
    if compressors:
        groups.add(SIG_COMPRESSION)
    return groups


def _assess_fragmentation(evidence: MemoryEvidence, report: MemoryReport) -> None:
    for pattern in FRAGMENTATION_PATTERNS:
        if _contains(evidence.heap_corpus, pattern):
            report.warnings.append(
                f"Runtime memory allocation pattern detected: {pattern}"
            )


def _assess_cgo(evidence: MemoryEvidence, report: MemoryReport) -> None:
    for pattern in CGO_PATTERNS:
        if _contains(evidence.heap_corpus, pattern):
            report.suspicions.append(Suspicion(
                category=CAT_CGO,
                description="CGO allocations detected - these allocate outside Go heap",
                severity=Severity.MEDIUM.value,
                confidence=Confidence.CONFIRMED.value,
                evidence=f"Found CGO pattern: {pattern}",
            ))
            report.recommendations.extend(_CGO_RECS)
            return


def _assess_goroutine_stacks(
    evidence: MemoryEvidence,
    policy: AnalysisProfile,
    report: MemoryReport,
) -> None:
    count = evidence.goroutine_count
    severity = goroutine_stack_severity(count, policy)
    if severity is None:
        return

    floor_kb = policy.goroutine_stack_floor_kb
    min_stack_mb = count * floor_kb / 1024
    report.suspicions.append(Suspicion(
        category=CAT_GOROUTINES,
        description=(
            f"High goroutine count ({count}) - stacks use at least {min_stack_mb:.1f}MB"
        ),
        severity=severity.value,
        confidence=Confidence.CONFIRMED.value,
        evidence=(
            f"{count} goroutines * {floor_kb}KB minimum = {min_stack_mb:.1f}MB "
            "(a floor: deep stacks can use much more)"
        ),
    ))
    report.recommendations.extend(_GOROUTINE_RECS)


def _assess_rss(
    evidence: MemoryEvidence,
    policy: AnalysisProfile,
    report: MemoryReport,
) -> None:
    rss = evidence.container_rss_mb
    if rss is None or rss <= 0 or evidence.heap_inuse_mb <= 0:
        return

    mismatch = rss - evidence.heap_inuse_mb
    if mismatch <= policy.rss_mismatch_mb:
        return

    report.suspicions.append(Suspicion(
        category=CAT_RSS,
        description=(
            f"Container RSS ({rss:.0f}MB) significantly exceeds Go heap "
            f"({evidence.heap_inuse_mb:.1f}MB) by {mismatch:.0f}MB"
        ),
        severity=Severity.HIGH.value,
        confidence=Confidence.CONFIRMED.value,
        evidence=(
            f"Difference: {mismatch:.0f}MB unaccounted memory - "
            "this memory is outside Go heap"
        ),
    ))
    report.recommendations.extend(_RSS_RECS)


def apply_code_findings(
    suspicions: List[Suspicion],
    findings: List[CodeFinding],
) -> None:
    """
    Upgrade suspicions that a source finding corroborates.

    Application code upgrades suspected/possible to confirmed; vendored
    code upgrades possible to likely.  Application findings win over
    vendored ones.
    """
    for suspicion in suspicions:
        current = Confidence(suspicion.confidence)
        if current not in (Confidence.SUSPECTED, Confidence.POSSIBLE):
            continue

        wanted = _CONFIRMING_FINDINGS.get(suspicion.category)
        if wanted is None:
            continue

        best: Optional[CodeFinding] = None
        for cf in findings:
            if cf.category != wanted:
                continue
            if best is None or (best.is_vendor and not cf.is_vendor):
                best = cf
        if best is None:
            continue

        if not best.is_vendor:
            suspicion.confidence = upgrade_confidence(current, Confidence.CONFIRMED).value
            suspicion.evidence += f"; CODE FOUND: {best.file}:{best.line}"
        else:
            if current == Confidence.POSSIBLE:
                suspicion.confidence = upgrade_confidence(current, Confidence.LIKELY).value
            suspicion.evidence += f"; vendor code: {best.file}:{best.line}"


def summarize(report: MemoryReport) -> str:
    head = f"Heap in-use: {report.heap_inuse_mb:.1f}MB"
    if report.heap_alloc_mb > 0:
        head += f" | Total allocated: {report.heap_alloc_mb:.1f}MB"
    if report.goroutine_count > 0:
        head += f" | Goroutines: {report.goroutine_count}"

    if not report.suspicions:
        return head + "\nNo obvious memory issues detected in heap profile."

    counts = {c: 0 for c in Confidence}
    for s in report.suspicions:
        counts[Confidence(s.confidence)] += 1

    tail = f"Found {len(report.suspicions)} potential issues"
    if counts[Confidence.CONFIRMED] or counts[Confidence.LIKELY]:
        tail += (
            f" ({counts[Confidence.CONFIRMED]} confirmed, "
            f"{counts[Confidence.LIKELY]} likely, "
            f"{counts[Confidence.SUSPECTED]} suspected)"
        )
    return head + "\n" + tail


def assess_memory(
    evidence: MemoryEvidence,
    policy: AnalysisProfile,
    repo_root: Optional[Path] = None,
) -> MemoryReport:
    """
    Run every off-heap check over *evidence*.

    Parameters
    ----------
    evidence : MemoryEvidence
        Output of ``collect_memory_evidence`` (or built directly in tests).
    policy : AnalysisProfile
        Churn, goroutine and RSS thresholds.
    repo_root : Path, optional
        Source tree to scan for confirming patterns when any signature
        group was seen.
    """
    report = MemoryReport(
        heap_inuse_mb=evidence.heap_inuse_mb,
        heap_alloc_mb=evidence.heap_alloc_mb,
        goroutine_count=evidence.goroutine_count,
        warnings=list(evidence.warnings),
    )

    groups = _assess_signatures(evidence, policy, report)
    _assess_fragmentation(evidence, report)
    _assess_goroutine_stacks(evidence, policy, report)
    _assess_cgo(evidence, report)
    _assess_rss(evidence, policy, report)

    if groups:
        if repo_root is not None:
            report.code_findings = scan_repository(Path(repo_root), groups)
            apply_code_findings(report.suspicions, report.code_findings)
        else:
            report.warnings.append(
                "Provide repo_root parameter to scan codebase for problematic patterns"
            )

    report.summary = summarize(report)
    logger.debug("memory: %d suspicions", len(report.suspicions))
    return report


def analyze_memory(
    heap_profile: Profile,
    policy: AnalysisProfile,
    cpu_profile: Optional[Profile] = None,
    goroutine_profile: Optional[Profile] = None,
    container_rss_mb: Optional[float] = None,
    repo_root: Optional[Path] = None,
) -> MemoryReport:
    evidence = collect_memory_evidence(
        heap_profile,
        cpu_profile=cpu_profile,
        goroutine_profile=goroutine_profile,
        container_rss_mb=container_rss_mb,
    )
    return assess_memory(evidence, policy, repo_root=repo_root)
