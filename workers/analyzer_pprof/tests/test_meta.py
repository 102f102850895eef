"""
Tests for profile metadata and next-step hints.
"""
import pytest

from analyzer_pprof.core.meta import default_sample_index, detect_kind, profile_hints, profile_meta
from analyzer_pprof.tests.conftest import CPU_TYPES, HEAP_TYPES, make_profile, make_sample


class TestDetectKind:

    @pytest.mark.parametrize("name,expected", [
        ("prod-cpu.json", "cpu"),
        ("/tmp/run/block.pb.gz", "block"),
        ("C:\\profiles\\mutex.json", "mutex"),
    ])
    def test_file_name_hint(self, goroutine_profile, name, expected):
        assert detect_kind(goroutine_profile, name) == expected

    def test_samples_need_period_for_cpu(self):
        assert detect_kind(make_profile(CPU_TYPES, [], period=10_000_000)) == "cpu"
        assert detect_kind(make_profile([("samples", "count")], [])) == "unknown"

    def test_sample_types(self, heap_profile, goroutine_profile, mutex_profile):
        assert detect_kind(heap_profile) == "heap"
        assert detect_kind(goroutine_profile) == "goroutine"
        assert detect_kind(mutex_profile) == "mutex"


class TestProfileMeta:

    def test_heap_meta(self, heap_profile):
        meta = profile_meta(heap_profile, source_name="heap.json")

        assert meta.detected_profile_kind == "heap"
        assert [st.type for st in meta.sample_types] == [
            "alloc_objects", "alloc_space", "inuse_objects", "inuse_space",
        ]
        assert meta.default_sample_index == 3
        totals = {t.type: t.total for t in meta.totals}
        assert totals["alloc_space"] == 2048 * 1024 * 1024
        assert meta.go_version == "go version go1.22.3 linux/amd64"
        assert meta.build_id == "abc123"
        assert meta.duration_nanos == 60_000_000_000
        assert any("alloc_space" in h for h in meta.hints)

    def test_label_keys(self):
        prof = make_profile([("goroutine", "count")], [
            make_sample([1], ["a"], labels={"state": ["running"]}),
            make_sample([1], ["b"], labels={"handler": ["x"], "state": ["waiting"]}),
        ])
        assert profile_meta(prof).label_keys == ["handler", "state"]

    def test_empty_profile(self):
        meta = profile_meta(make_profile([], []))
        assert meta.default_sample_index == -1
        assert meta.detected_profile_kind == "unknown"
        assert "profile has no samples" in meta.warnings

    def test_default_index_without_declared_default(self):
        assert default_sample_index(make_profile(HEAP_TYPES, [])) == 0


class TestHints:

    def test_heap_hints_follow_sample_type(self, heap_profile):
        inuse = profile_hints(heap_profile)
        alloc = profile_hints(heap_profile, sample_type="alloc_space")
        assert "Use sample type 'alloc_space'" in inuse[0]
        assert "allocation paths" in alloc[0]

    def test_cpu_hints(self, cpu_profile):
        hints = profile_hints(cpu_profile)
        assert any("cumulative" in h for h in hints)
        assert any("overhead report" in h for h in hints)

    def test_goroutine_hint(self, goroutine_profile):
        assert "goroutine leaks" in profile_hints(goroutine_profile)[0]

    def test_meta_passes_sample_type_to_hints(self, heap_profile):
        meta = profile_meta(heap_profile, sample_type="alloc_space")
        assert "allocation paths" in meta.hints[0]
        assert meta.warnings == []

    def test_unknown_sample_type_warns(self, heap_profile):
        meta = profile_meta(heap_profile, sample_type="bogus")
        assert "sample type 'bogus' not found" in meta.warnings
