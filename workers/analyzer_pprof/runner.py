"""
Analyzer runner — top-level orchestration: profile(s) → report.

This module ties the core detectors, the policy profile and IO together
into one ``run_*`` function per analysis that can be called from the API
endpoints or from the CLI.  Every runner optionally writes its report as
JSON into an output directory.

Usage:
    python -m analyzer_pprof.runner overhead cpu.json -o out/
    python -m analyzer_pprof.runner memory heap.json --cpu cpu.json --rss-mb 2048
    python -m analyzer_pprof.runner bundle --cpu cpu.json --heap heap.json --mutex mutex.json
"""
import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from analyzer_pprof.core.alloc_paths import analyze_alloc_paths
from analyzer_pprof.core.categorize import categorize_goroutines
from analyzer_pprof.core.contention import analyze_contention
from analyzer_pprof.core.correlate import correlate_profiles, normalize_bundle, summarize_hotspots
from analyzer_pprof.core.goroutines import analyze_goroutines
from analyzer_pprof.core.meta import profile_meta
from analyzer_pprof.core.offheap import analyze_memory
from analyzer_pprof.core.overhead import detect_overhead
from analyzer_pprof.core.profile import Profile
from analyzer_pprof.core.regression import check_regressions
from analyzer_pprof.core.temporal import analyze_temporal
from analyzer_pprof.io.loader import load_profile
from analyzer_pprof.io.schema import (
    AllocPathsReport,
    BundleReport,
    CategorizeReport,
    ContentionReport,
    CorrelationReport,
    GoroutineReport,
    HotspotReport,
    MemoryReport,
    MetaReport,
    OverheadReport,
    RegressionCheckSpec,
    RegressionReport,
    TemporalReport,
)
from analyzer_pprof.io.writer import render_report, write_report
from analyzer_pprof.policy.profile import AnalysisProfile

logger = logging.getLogger(__name__)

BUNDLE_WORKERS = 4


def _require(profile: Optional[Profile], label: str = "profile") -> Profile:
    if profile is None:
        raise ValueError(f"{label} is required")
    return profile


def _finish(report, output_dir: Optional[Path], report_name: str):
    if output_dir:
        path = write_report(report, output_dir, report_name)
        logger.info("Wrote %s", path)
    if report.warnings:
        logger.info("%s: %d warnings", report_name, len(report.warnings))
    return report


# ── Single-profile analyses ──────────────────────────────────────────────────

def run_meta(
    profile: Optional[Profile],
    source_name: Optional[str] = None,
    sample_type: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> MetaReport:
    report = profile_meta(_require(profile), source_name=source_name, sample_type=sample_type)
    return _finish(report, output_dir, "meta")


def run_overhead(
    profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    sample_index: Optional[int] = None,
    output_dir: Optional[Path] = None,
) -> OverheadReport:
    """
    Overhead report for one profile.

    Parameters
    ----------
    profile : Profile
        Parsed profile, usually CPU.
    policy : AnalysisProfile, optional
        Thresholds.  Defaults to AnalysisProfile.v0().
    sample_index : int, optional
        Column to analyze; default sample type when omitted.
    output_dir : Path, optional
        Directory to write ``overhead.json``.  If None, nothing is written.
    """
    policy = policy or AnalysisProfile.v0()
    report = detect_overhead(_require(profile), policy, sample_index=sample_index)
    return _finish(report, output_dir, "overhead")


def run_memory(
    heap_profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    cpu_profile: Optional[Profile] = None,
    goroutine_profile: Optional[Profile] = None,
    container_rss_mb: Optional[float] = None,
    repo_root: Optional[Path] = None,
    output_dir: Optional[Path] = None,
) -> MemoryReport:
    """
    Off-heap memory analysis.

    Only the heap profile is required; each missing optional input is
    reported as a warning.
    """
    policy = policy or AnalysisProfile.v0()
    if repo_root is not None and not Path(repo_root).is_dir():
        raise ValueError(f"repo_root is not a directory: {repo_root}")
    report = analyze_memory(
        _require(heap_profile, "heap profile"),
        policy,
        cpu_profile=cpu_profile,
        goroutine_profile=goroutine_profile,
        container_rss_mb=container_rss_mb,
        repo_root=repo_root,
    )
    return _finish(report, output_dir, "memory")


def run_contention(
    profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    source_name: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> ContentionReport:
    policy = policy or AnalysisProfile.v0()
    report = analyze_contention(_require(profile), policy, source_name=source_name)
    return _finish(report, output_dir, "contention")


def run_goroutines(
    profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    leak_threshold: Optional[int] = None,
    output_dir: Optional[Path] = None,
) -> GoroutineReport:
    policy = policy or AnalysisProfile.v0()
    report = analyze_goroutines(_require(profile), policy, leak_threshold=leak_threshold)
    return _finish(report, output_dir, "goroutines")


def run_categorize(
    profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    categories: Optional[Mapping[str, str]] = None,
    presets: Sequence[str] = (),
    output_dir: Optional[Path] = None,
) -> CategorizeReport:
    policy = policy or AnalysisProfile.v0()
    report = categorize_goroutines(
        _require(profile), policy, categories=categories, presets=presets,
    )
    return _finish(report, output_dir, "goroutine_categories")


def run_temporal(
    profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    output_dir: Optional[Path] = None,
) -> TemporalReport:
    policy = policy or AnalysisProfile.v0()
    report = analyze_temporal(_require(profile), policy)
    return _finish(report, output_dir, "temporal")


def run_alloc_paths(
    profile: Optional[Profile],
    policy: Optional[AnalysisProfile] = None,
    app_prefixes: Optional[Sequence[str]] = None,
    min_percent: Optional[float] = None,
    max_paths: Optional[int] = None,
    group_by_source: bool = False,
    output_dir: Optional[Path] = None,
) -> AllocPathsReport:
    policy = policy or AnalysisProfile.v0()
    report = analyze_alloc_paths(
        _require(profile, "heap profile"),
        policy,
        app_prefixes=app_prefixes,
        min_percent=min_percent,
        max_paths=max_paths,
        group_by_source=group_by_source,
    )
    return _finish(report, output_dir, "alloc_paths")


def run_regression(
    profile: Optional[Profile],
    checks: Sequence[RegressionCheckSpec],
    sample_type: Optional[str] = None,
    output_dir: Optional[Path] = None,
) -> RegressionReport:
    report = check_regressions(_require(profile), checks, sample_type=sample_type)
    if not report.passed:
        failed = [c.function for c in report.checks if not c.passed]
        logger.info("Regression checks failed: %s", ", ".join(failed))
    return _finish(report, output_dir, "regression")


# ── Multi-profile analyses ───────────────────────────────────────────────────

def run_correlate(
    profiles: Mapping[str, Optional[Profile]],
    policy: Optional[AnalysisProfile] = None,
    node_count: Optional[int] = None,
    output_dir: Optional[Path] = None,
) -> CorrelationReport:
    policy = policy or AnalysisProfile.v0()
    report = correlate_profiles(profiles, policy, node_count=node_count)
    return _finish(report, output_dir, "correlation")


def run_hotspots(
    profiles: Mapping[str, Optional[Profile]],
    policy: Optional[AnalysisProfile] = None,
    node_count: Optional[int] = None,
    output_dir: Optional[Path] = None,
) -> HotspotReport:
    policy = policy or AnalysisProfile.v0()
    report = summarize_hotspots(profiles, policy, node_count=node_count)
    return _finish(report, output_dir, "hotspots")


def run_bundle_report(
    profiles: Mapping[str, Optional[Profile]],
    policy: Optional[AnalysisProfile] = None,
    output_dir: Optional[Path] = None,
) -> BundleReport:
    """
    Run the per-kind analyses of a profile bundle concurrently.

    CPU → overhead, heap → allocation paths, mutex/block → contention,
    goroutine → goroutine analysis, plus the hotspot summary.  Detectors
    share no state, so each runs on its own worker thread.

    Raises ValueError when the bundle holds no profile.
    """
    if not any(p is not None for p in profiles.values()):
        raise ValueError("profiles are required")

    policy = policy or AnalysisProfile.v0()
    report = BundleReport()
    bundle = normalize_bundle(profiles, report.warnings)

    with ThreadPoolExecutor(max_workers=BUNDLE_WORKERS) as pool:
        futures: Dict[str, object] = {}
        if "cpu" in bundle:
            futures["overhead"] = pool.submit(detect_overhead, bundle["cpu"], policy)
        if "heap" in bundle:
            futures["alloc_paths"] = pool.submit(analyze_alloc_paths, bundle["heap"], policy)
        if "mutex" in bundle:
            futures["contention"] = pool.submit(analyze_contention, bundle["mutex"], policy)
        if "goroutine" in bundle:
            futures["goroutines"] = pool.submit(analyze_goroutines, bundle["goroutine"], policy)
        futures["hotspots"] = pool.submit(summarize_hotspots, bundle, policy)

        for name in sorted(futures):
            setattr(report, name, futures[name].result())

    for kind in ("cpu", "heap", "mutex", "goroutine"):
        if kind not in bundle:
            report.warnings.append(f"{kind} profile missing from bundle")

    return _finish(report, output_dir, "bundle")


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════

def _load_optional(path: Optional[Path]) -> Optional[Profile]:
    if path is None:
        return None
    return load_profile(path)


def _parse_categories(values: Optional[List[str]]) -> Dict[str, str]:
    categories: Dict[str, str] = {}
    for item in values or []:
        name, sep, pattern = item.partition("=")
        if not sep:
            raise ValueError(f"category must be NAME=REGEX, got {item!r}")
        categories[name] = pattern
    return categories


def _bundle_from_args(args) -> Dict[str, Optional[Profile]]:
    return {
        "cpu": _load_optional(args.cpu),
        "heap": _load_optional(args.heap),
        "mutex": _load_optional(args.mutex),
        "block": _load_optional(args.block),
        "goroutine": _load_optional(args.goroutine),
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="analyzer_pprof — heuristic analysis of Go runtime profiles",
    )
    parser.add_argument(
        "-o", "--output-dir",
        type=Path,
        default=None,
        help="Directory to write the JSON report (default: print to stdout)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def single(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("profile", type=Path, help="Profile JSON (optionally .json.gz)")
        return p

    def multi(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        for kind in ("cpu", "heap", "mutex", "block", "goroutine"):
            p.add_argument(f"--{kind}", type=Path, default=None, help=f"{kind} profile JSON")
        return p

    p = single("meta", "Describe a profile")
    p.add_argument("--sample-type", default=None, help="Column being viewed (selects heap hints)")

    p = single("overhead", "Infrastructure / observability overhead")
    p.add_argument("--sample-index", type=int, default=None)

    p = single("memory", "Off-heap memory suspicions (profile = heap profile)")
    p.add_argument("--cpu", type=Path, default=None, help="CPU profile JSON")
    p.add_argument("--goroutine", type=Path, default=None, help="Goroutine profile JSON")
    p.add_argument("--rss-mb", type=float, default=None, help="Container RSS in MB")
    p.add_argument("--repo-root", type=Path, default=None, help="Go source tree to scan")

    single("contention", "Mutex / block contention by lock site")

    p = single("goroutines", "Goroutine states, wait reasons and leak candidates")
    p.add_argument("--leak-threshold", type=int, default=None)

    p = single("categorize", "Goroutine categorization by regex")
    p.add_argument("--preset", action="append", default=[], help="Preset group (repeatable)")
    p.add_argument("--category", action="append", default=[], help="NAME=REGEX (repeatable)")

    single("temporal", "Temporal SDK worker settings from a goroutine profile")

    p = single("alloc-paths", "Heap allocation paths")
    p.add_argument("--prefix", action="append", default=None, help="Application frame prefix")
    p.add_argument("--min-percent", type=float, default=None)
    p.add_argument("--max-paths", type=int, default=None)
    p.add_argument("--group-by-source", action="store_true")

    p = single("regression", "Flat/cum percentage ceilings")
    p.add_argument(
        "--check", nargs=3, action="append", required=True,
        metavar=("FUNCTION", "METRIC", "MAX"),
        help="Function regex, flat_pct|cum_pct, ceiling (repeatable)",
    )
    p.add_argument("--sample-type", default=None)

    p = multi("correlate", "Cross-profile hotspot correlation")
    p.add_argument("--node-count", type=int, default=None)
    p = multi("hotspots", "Top functions per profile in a bundle")
    p.add_argument("--node-count", type=int, default=None)
    multi("bundle", "All per-kind analyses of a bundle")

    return parser


def _dispatch(args):
    cmd = args.command
    out = args.output_dir

    if cmd == "meta":
        return run_meta(
            load_profile(args.profile),
            source_name=args.profile.name,
            sample_type=args.sample_type,
            output_dir=out,
        )
    if cmd == "overhead":
        return run_overhead(load_profile(args.profile), sample_index=args.sample_index, output_dir=out)
    if cmd == "memory":
        return run_memory(
            load_profile(args.profile),
            cpu_profile=_load_optional(args.cpu),
            goroutine_profile=_load_optional(args.goroutine),
            container_rss_mb=args.rss_mb,
            repo_root=args.repo_root,
            output_dir=out,
        )
    if cmd == "contention":
        return run_contention(load_profile(args.profile), source_name=args.profile.name, output_dir=out)
    if cmd == "goroutines":
        return run_goroutines(load_profile(args.profile), leak_threshold=args.leak_threshold, output_dir=out)
    if cmd == "categorize":
        return run_categorize(
            load_profile(args.profile),
            categories=_parse_categories(args.category),
            presets=args.preset,
            output_dir=out,
        )
    if cmd == "temporal":
        return run_temporal(load_profile(args.profile), output_dir=out)
    if cmd == "alloc-paths":
        return run_alloc_paths(
            load_profile(args.profile),
            app_prefixes=args.prefix,
            min_percent=args.min_percent,
            max_paths=args.max_paths,
            group_by_source=args.group_by_source,
            output_dir=out,
        )
    if cmd == "regression":
        checks = [
            RegressionCheckSpec(function=fn, metric=metric, max=float(ceiling))
            for fn, metric, ceiling in args.check
        ]
        return run_regression(
            load_profile(args.profile), checks, sample_type=args.sample_type, output_dir=out,
        )
    if cmd == "correlate":
        return run_correlate(_bundle_from_args(args), node_count=args.node_count, output_dir=out)
    if cmd == "hotspots":
        return run_hotspots(_bundle_from_args(args), node_count=args.node_count, output_dir=out)
    if cmd == "bundle":
        return run_bundle_report(_bundle_from_args(args), output_dir=out)
    raise ValueError(f"unknown command: {cmd}")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        report = _dispatch(args)
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    if args.output_dir:
        print(f"Outputs written to: {args.output_dir}")
    else:
        sys.stdout.write(render_report(report))

    if isinstance(report, RegressionReport) and not report.passed:
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
