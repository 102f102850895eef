"""
Tests for infrastructure overhead detection.
"""
import pytest

from analyzer_pprof.core.overhead import classify_frame, detect_overhead, overhead_hints
from analyzer_pprof.policy.patterns import OVERHEAD_CATEGORIES
from analyzer_pprof.tests.conftest import cpu_sample, make_cpu_profile, make_profile


# ═══════════════════════════════════════════════════════════════════════════════
# Categorization
# ═══════════════════════════════════════════════════════════════════════════════

class TestClassifyFrame:

    @pytest.mark.parametrize("function,category", [
        ("go.opentelemetry.io/otel/sdk/trace.(*recordingSpan).End", "OpenTelemetry Tracing"),
        ("go.uber.org/zap.(*Logger).Info", "Logging (zap)"),
        ("github.com/prometheus/client_golang/prometheus.(*counter).Inc", "Prometheus Metrics"),
        ("encoding/json.Marshal", "JSON Serialization"),
        ("net/http.(*conn).serve", "HTTP Framework"),
        ("runtime.mallocgc", "Runtime/GC"),
    ])
    def test_known_frames(self, function, category):
        assert classify_frame(function).name == category

    def test_application_frame(self):
        assert classify_frame("github.com/acme/svc/api.compute") is None

    def test_match_is_case_sensitive(self):
        assert classify_frame("ENCODING/JSON.Marshal") is None


class TestDetectOverhead:

    def test_tracing_dominated_profile(self, cpu_profile, policy):
        """60% of CPU under OTel: one high-severity detection with a suggestion."""
        report = detect_overhead(cpu_profile, policy)

        assert report.profile_kind == "cpu"
        assert report.sample_type == "cpu"
        assert report.total_value == 1_000_000_000
        assert len(report.detections) == 1

        det = report.detections[0]
        assert det.category == "OpenTelemetry Tracing"
        assert det.percentage == pytest.approx(60.0)
        assert det.severity == "high"
        assert det.suggestion is not None
        assert det.top_functions == ["go.opentelemetry.io/otel/sdk/trace.(*recordingSpan).End"]
        assert any("High observability overhead: 60.0%" in w for w in report.warnings)

    def test_each_sample_counted_once(self, policy):
        """A stack with several infrastructure frames credits only the leafmost one."""
        prof = make_cpu_profile([
            cpu_sample(500, [
                "encoding/json.Marshal",
                "go.uber.org/zap.(*Logger).Info",
                "net/http.(*conn).serve",
            ]),
            cpu_sample(500, ["main.work"]),
        ])
        report = detect_overhead(prof, policy)

        assert [d.category for d in report.detections] == ["JSON Serialization"]
        assert report.total_overhead_pct == pytest.approx(50.0)
        assert sum(d.value for d in report.detections) <= report.total_value

    def test_total_overhead_never_exceeds_100(self, policy):
        prof = make_cpu_profile([
            cpu_sample(100, ["go.uber.org/zap.x", "github.com/sirupsen/logrus.y"]),
            cpu_sample(100, ["google.golang.org/grpc.z", "google.golang.org/protobuf.w"]),
        ])
        report = detect_overhead(prof, policy)
        assert report.total_overhead_pct <= 100.0 + 1e-9

    def test_below_floor_is_dropped(self, policy):
        prof = make_cpu_profile([
            cpu_sample(5, ["encoding/json.Marshal"]),
            cpu_sample(995, ["main.work"]),
        ])
        assert detect_overhead(prof, policy).detections == []

    @pytest.mark.parametrize("share,severity,has_suggestion", [
        (3, "low", False),
        (8, "medium", False),
        (12, "medium", True),
        (20, "high", True),
    ])
    def test_severity_and_suggestion_bands(self, policy, share, severity, has_suggestion):
        prof = make_cpu_profile([
            cpu_sample(share, ["go.uber.org/zap.(*Logger).Info"]),
            cpu_sample(100 - share, ["main.work"]),
        ])
        det = detect_overhead(prof, policy).detections[0]
        assert det.severity == severity
        assert (det.suggestion is not None) == has_suggestion

    def test_category_without_suggestion(self, policy):
        prof = make_cpu_profile([cpu_sample(100, ["net/http.(*conn).serve"])])
        det = detect_overhead(prof, policy).detections[0]
        assert det.category == "HTTP Framework"
        assert det.suggestion is None

    def test_sorted_by_percentage(self, policy):
        prof = make_cpu_profile([
            cpu_sample(20, ["go.uber.org/zap.x"]),
            cpu_sample(50, ["encoding/json.Marshal"]),
            cpu_sample(30, ["main.work"]),
        ])
        pcts = [d.percentage for d in detect_overhead(prof, policy).detections]
        assert pcts == sorted(pcts, reverse=True)


class TestDegenerateInputs:

    def test_no_sample_types(self, policy):
        report = detect_overhead(make_profile([], []), policy)
        assert report.detections == []
        assert "profile has no sample types" in report.warnings

    def test_no_samples(self, policy):
        report = detect_overhead(make_cpu_profile([]), policy)
        assert report.detections == []
        assert "profile has no samples" in report.warnings

    def test_out_of_range_index_falls_back(self, cpu_profile, policy):
        report = detect_overhead(cpu_profile, policy, sample_index=9)
        assert report.sample_type == "samples"
        assert "sample index 9 out of range; using 0" in report.warnings


class TestOverheadHints:

    def test_hints_for_high_overhead(self, cpu_profile, policy):
        report = detect_overhead(cpu_profile, policy)
        hints = overhead_hints(report, policy)
        assert any("High observability overhead detected" in h for h in hints)
        assert OVERHEAD_CATEGORIES[0].suggestion in hints
