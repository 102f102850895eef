"""
Tests for the runner: orchestration, determinism, and the CLI.
"""
import json

import pytest

from analyzer_pprof.io.loader import profile_to_dict
from analyzer_pprof.io.schema import RegressionCheckSpec
from analyzer_pprof.runner import (
    main,
    run_bundle_report,
    run_categorize,
    run_memory,
    run_meta,
    run_overhead,
    run_regression,
    run_temporal,
)


def _dump(profile, path):
    path.write_text(json.dumps(profile_to_dict(profile)))
    return path


# ═══════════════════════════════════════════════════════════════════════════════
# run_* functions
# ═══════════════════════════════════════════════════════════════════════════════

class TestRunners:

    def test_overhead_is_idempotent(self, cpu_profile, tmp_path):
        """Two runs over the same profile write byte-identical JSON."""
        run_overhead(cpu_profile, output_dir=tmp_path / "1")
        run_overhead(cpu_profile, output_dir=tmp_path / "2")
        assert (tmp_path / "1" / "overhead.json").read_bytes() == \
            (tmp_path / "2" / "overhead.json").read_bytes()

    def test_missing_profile_rejected(self):
        with pytest.raises(ValueError, match="profile is required"):
            run_overhead(None)
        with pytest.raises(ValueError, match="heap profile is required"):
            run_memory(None)

    def test_memory_repo_root_must_exist(self, heap_profile, tmp_path):
        with pytest.raises(ValueError, match="repo_root is not a directory"):
            run_memory(heap_profile, repo_root=tmp_path / "missing")

    def test_categorize_writes_report(self, goroutine_profile, tmp_path):
        run_categorize(goroutine_profile, presets=["sync"], output_dir=tmp_path)
        doc = json.loads((tmp_path / "goroutine_categories.json").read_text())
        assert doc["presets_used"] == ["sync"]

    def test_regression(self, cpu_profile):
        report = run_regression(cpu_profile, [RegressionCheckSpec(function="otel", max=10)])
        assert report.passed is False

    def test_overhead_report_carries_hints(self, cpu_profile):
        report = run_overhead(cpu_profile)
        assert report.total_overhead_pct == pytest.approx(60.0)
        assert report.hints[0].startswith("High observability overhead detected")
        high = [d.suggestion for d in report.detections if d.severity == "high" and d.suggestion]
        assert high and high[0] in report.hints

    def test_meta_sample_type_selects_heap_hint(self, heap_profile):
        inuse = run_meta(heap_profile)
        alloc = run_meta(heap_profile, sample_type="alloc_space")
        assert "Use sample type 'alloc_space'" in inuse.hints[0]
        assert "allocation paths" in alloc.hints[0]

    def test_temporal(self, goroutine_profile):
        report = run_temporal(goroutine_profile)
        assert report.total_goroutines == 1505
        assert "no Temporal SDK goroutines found" in report.warnings


class TestBundle:

    def test_full_bundle(self, cpu_profile, heap_profile, mutex_profile, goroutine_profile):
        report = run_bundle_report({
            "cpu": cpu_profile,
            "heap": heap_profile,
            "mutex": mutex_profile,
            "goroutine": goroutine_profile,
        })
        assert report.overhead.detections[0].category == "OpenTelemetry Tracing"
        assert report.alloc_paths.total_alloc > 0
        assert report.contention.by_lock_site[0].key == "sync.(*Mutex).Lock@cache.go:42"
        assert report.goroutines.potential_leaks[0].count == 1500
        assert report.hotspots.goroutine_count == 1505
        assert report.warnings == []

    def test_partial_bundle(self, mutex_profile):
        report = run_bundle_report({"block": mutex_profile, "cpu": None})
        assert report.contention is not None
        assert report.overhead is None
        assert "cpu profile missing from bundle" in report.warnings
        assert "mutex profile missing from bundle" not in report.warnings

    def test_empty_bundle_rejected(self):
        with pytest.raises(ValueError, match="profiles are required"):
            run_bundle_report({"cpu": None})


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════

class TestCLI:

    def test_prints_json(self, goroutine_profile, tmp_path, capsys):
        path = _dump(goroutine_profile, tmp_path / "goroutine.json")
        assert main(["goroutines", str(path)]) == 0
        doc = json.loads(capsys.readouterr().out)
        assert doc["total_goroutines"] == 1505

    def test_writes_output_dir(self, mutex_profile, tmp_path):
        path = _dump(mutex_profile, tmp_path / "mutex.json")
        out = tmp_path / "out"
        assert main(["-o", str(out), "contention", str(path)]) == 0
        doc = json.loads((out / "contention.json").read_text())
        assert doc["profile_type"] == "mutex"

    def test_bundle_command(self, cpu_profile, heap_profile, tmp_path, capsys):
        cpu = _dump(cpu_profile, tmp_path / "cpu.json")
        heap = _dump(heap_profile, tmp_path / "heap.json")
        assert main(["bundle", "--cpu", str(cpu), "--heap", str(heap)]) == 0
        doc = json.loads(capsys.readouterr().out)
        assert doc["overhead"]["total_overhead_pct"] == pytest.approx(60.0)
        assert doc["contention"] is None

    def test_failed_regression_exit_code(self, cpu_profile, tmp_path):
        path = _dump(cpu_profile, tmp_path / "cpu.json")
        code = main(["regression", str(path), "--check", "otel", "flat_pct", "10"])
        assert code == 2

    def test_meta_sample_type_flag(self, heap_profile, tmp_path, capsys):
        path = _dump(heap_profile, tmp_path / "heap.json")
        assert main(["meta", str(path), "--sample-type", "alloc_space"]) == 0
        doc = json.loads(capsys.readouterr().out)
        assert "allocation paths" in doc["hints"][0]
        assert doc["warnings"] == []

    def test_temporal_command(self, goroutine_profile, tmp_path):
        path = _dump(goroutine_profile, tmp_path / "goroutine.json")
        out = tmp_path / "out"
        assert main(["-o", str(out), "temporal", str(path)]) == 0
        doc = json.loads((out / "temporal.json").read_text())
        assert doc["counts"]["workflows_cached"] == 0

    def test_missing_file_exit_code(self, tmp_path):
        assert main(["meta", str(tmp_path / "nope.json")]) == 1

    def test_bad_category_exit_code(self, goroutine_profile, tmp_path):
        path = _dump(goroutine_profile, tmp_path / "goroutine.json")
        assert main(["categorize", str(path), "--category", "no-equals-sign"]) == 1
