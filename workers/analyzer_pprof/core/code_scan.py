"""
Code scan — search Go sources for patterns that confirm an off-heap finding.

Only the pattern groups relevant to what the profiles showed are searched.
Paths in findings are relative to the scanned root, POSIX style, so the
output is identical across machines.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, List, Sequence

from analyzer_pprof.io.schema import CodeFinding
from analyzer_pprof.policy.patterns import (
    COMPRESSION_CODE_PATTERNS,
    SIG_COMPRESSION,
    SIG_LIBC_ALLOC,
    SIG_LIBC_OPS,
    SIG_SQLITE,
    SQLITE_CODE_PATTERNS,
    CodePattern,
)

logger = logging.getLogger(__name__)

SOURCE_GLOB = "*.go"


def is_vendor_path(rel_path: str) -> bool:
    return rel_path.startswith("vendor/") or "/vendor/" in rel_path


def patterns_for_groups(groups: Iterable[str]) -> List[CodePattern]:
    """Code patterns worth searching given the signature groups found."""
    groups = set(groups)
    patterns: List[CodePattern] = []
    if groups & {SIG_SQLITE, SIG_LIBC_ALLOC, SIG_LIBC_OPS}:
        patterns.extend(SQLITE_CODE_PATTERNS)
    if SIG_COMPRESSION in groups:
        patterns.extend(COMPRESSION_CODE_PATTERNS)
    return patterns


def scan_sources(root: Path, patterns: Sequence[CodePattern]) -> List[CodeFinding]:
    """
    Grep every ``*.go`` file under *root* for *patterns*.

    Findings are ordered application code first, then vendored code, each
    by file then line.
    """
    if not patterns:
        return []

    compiled = [(p, re.compile(p.regex)) for p in patterns]
    findings: List[CodeFinding] = []

    for path in sorted(root.rglob(SOURCE_GLOB)):
        if not path.is_file():
            continue
        rel = path.relative_to(root).as_posix()
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Skipping unreadable source %s: %s", rel, exc)
            continue

        for lineno, line in enumerate(text.splitlines(), start=1):
            for pattern, regex in compiled:
                if regex.search(line):
                    findings.append(CodeFinding(
                        category=pattern.category,
                        file=rel,
                        line=lineno,
                        pattern=pattern.regex,
                        snippet=line.strip(),
                        explanation=pattern.explanation,
                        is_vendor=is_vendor_path(rel),
                    ))

    findings.sort(key=lambda f: (f.is_vendor, f.file, f.line))
    logger.debug("code scan: %d findings under %s", len(findings), root)
    return findings


def scan_repository(root: Path, groups: Iterable[str]) -> List[CodeFinding]:
    return scan_sources(root, patterns_for_groups(groups))
