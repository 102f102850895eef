"""
API tests: each analysis endpoint over inline and on-disk profiles.
"""
import json

import pytest
from fastapi.testclient import TestClient

from analyzer_pprof.io.loader import profile_to_dict
from analyzer_pprof.tests.conftest import (
    CHAN_RECV_STACK,
    GOROUTINE_TYPES,
    HEAP_TYPES,
    MB,
    MUTEX_TYPES,
    cpu_sample,
    heap_sample,
    make_cpu_profile,
    make_profile,
    make_sample,
    mutex_sample,
)
from app.config import Settings, settings
from app.main import app


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def cpu_doc():
    return profile_to_dict(make_cpu_profile([
        cpu_sample(600, ["go.opentelemetry.io/otel/sdk/trace.(*recordingSpan).End", "main.main"]),
        cpu_sample(400, ["main.compute", "main.main"]),
    ]))


@pytest.fixture
def heap_doc():
    return profile_to_dict(make_profile(HEAP_TYPES, [
        heap_sample(1536 * MB, 60 * MB, ["runtime.mallocgc", "modernc.org/libc.Xmalloc", "main.store"]),
        heap_sample(512 * MB, 40 * MB, ["runtime.mallocgc", "main.compute"]),
    ]))


@pytest.fixture
def mutex_doc():
    return profile_to_dict(make_profile(MUTEX_TYPES, [
        mutex_sample(10, 700, [("sync.(*Mutex).Lock", "sync/mutex.go", 81), ("main.compute", "main.go", 5)]),
        mutex_sample(5, 300, [("sync.(*Mutex).Lock", "sync/mutex.go", 81), ("main.store", "main.go", 9)]),
    ]))


@pytest.fixture
def goroutine_doc():
    return profile_to_dict(make_profile(GOROUTINE_TYPES, [make_sample([1500], CHAN_RECV_STACK)]))


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_health_reports_cache_state(self, client):
        assert client.get("/health").json()["services_cached"] is False
        client.put("/services", json={"services": [{"name": "checkout"}]})
        body = client.get("/health").json()
        assert body["services_cached"] is True
        assert body["service"] == "pprof-insight-api"

    def test_root_lists_analysis_endpoints(self, client):
        endpoints = client.get("/").json()["analysis"]
        assert "POST /analysis/goroutines/temporal" in endpoints
        assert "GET /analysis/presets" in endpoints


class TestAnalysisEndpoints:

    def test_overhead(self, client, cpu_doc):
        resp = client.post("/analysis/overhead", json={"profile": cpu_doc})
        assert resp.status_code == 200
        body = resp.json()
        assert body["detections"][0]["category"] == "OpenTelemetry Tracing"
        assert body["package_name"] == "analyzer_pprof"
        assert body["hints"][0].startswith("High observability overhead detected")

    def test_meta(self, client, heap_doc):
        resp = client.post("/analysis/meta", json={"profile": heap_doc, "source_name": "heap.json"})
        assert resp.status_code == 200
        assert resp.json()["detected_profile_kind"] == "heap"

    def test_meta_sample_type(self, client, heap_doc):
        resp = client.post("/analysis/meta", json={"profile": heap_doc, "sample_type": "alloc_space"})
        assert "allocation paths" in resp.json()["hints"][0]

    def test_memory(self, client, heap_doc, cpu_doc):
        resp = client.post("/analysis/memory", json={
            "heap": {"profile": heap_doc},
            "cpu": {"profile": cpu_doc},
            "container_rss_mb": 2000,
        })
        assert resp.status_code == 200
        categories = {s["category"] for s in resp.json()["suspicions"]}
        assert "RSS/Heap Mismatch" in categories
        assert "Native Allocator Memory" in categories

    def test_contention(self, client, mutex_doc):
        resp = client.post("/analysis/contention", json={"profile": mutex_doc})
        body = resp.json()
        assert body["by_lock_site"][0]["key"] == "sync.(*Mutex).Lock@main.go:5"
        assert body["patterns"][0]["type"] == "hot_lock"

    def test_goroutines(self, client, goroutine_doc):
        resp = client.post("/analysis/goroutines", json={"profile": goroutine_doc})
        assert resp.json()["potential_leaks"][0]["count"] == 1500

    def test_categorize(self, client, goroutine_doc):
        resp = client.post("/analysis/goroutines/categorize", json={
            "profile": goroutine_doc, "presets": ["sync"],
        })
        assert resp.json()["categories"][0]["name"] == "channel_recv"

    def test_alloc_paths(self, client, heap_doc):
        resp = client.post("/analysis/alloc-paths", json={
            "profile": heap_doc, "app_prefixes": ["main."],
        })
        paths = resp.json()["paths"]
        assert paths[0]["alloc_site"] == "modernc.org/libc.Xmalloc"

    def test_alloc_paths_zero_floor(self, client, heap_doc):
        resp = client.post("/analysis/alloc-paths", json={"profile": heap_doc, "min_percent": 0})
        assert resp.status_code == 200
        assert len(resp.json()["paths"]) == 2

    def test_temporal(self, client, goroutine_doc):
        resp = client.post("/analysis/goroutines/temporal", json={"profile": goroutine_doc})
        assert resp.status_code == 200
        body = resp.json()
        assert body["total_goroutines"] == 1500
        assert body["inferred_settings"]["max_concurrent_activity_task_pollers"] == 0

    def test_regression(self, client, cpu_doc):
        resp = client.post("/analysis/regression", json={
            "profile": cpu_doc,
            "checks": [{"function": "otel", "max": 10}],
        })
        assert resp.status_code == 200
        assert resp.json()["passed"] is False

    def test_correlate_and_hotspots(self, client, cpu_doc, heap_doc, mutex_doc):
        payload = {
            "cpu": {"profile": cpu_doc},
            "heap": {"profile": heap_doc},
            "block": {"profile": mutex_doc},
        }
        corr = client.post("/analysis/correlate", json=payload).json()
        assert "mutex profile missing for correlation" not in corr["warnings"]

        hot = client.post("/analysis/hotspots", json=payload).json()
        assert hot["mutex_top"][0]["function"] == "sync.(*Mutex).Lock"
        assert "goroutine profile missing from bundle" in hot["warnings"]

    def test_bundle(self, client, cpu_doc, goroutine_doc):
        resp = client.post("/analysis/bundle", json={
            "cpu": {"profile": cpu_doc},
            "goroutine": {"profile": goroutine_doc},
        })
        body = resp.json()
        assert body["overhead"] is not None
        assert body["alloc_paths"] is None
        assert body["goroutines"]["total_goroutines"] == 1500

    def test_presets(self, client):
        presets = client.get("/analysis/presets").json()["presets"]
        assert "temporal" in presets
        assert presets["sync"]["select"] == r"runtime\.selectgo"


class TestProfilePaths:

    def test_relative_path(self, client, cpu_doc, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "PROFILES_ROOT", str(tmp_path))
        (tmp_path / "cpu.json").write_text(json.dumps(cpu_doc))
        resp = client.post("/analysis/overhead", json={"profile_path": "cpu.json"})
        assert resp.status_code == 200

    def test_absolute_path_inside_root(self, client, cpu_doc, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "PROFILES_ROOT", str(tmp_path))
        (tmp_path / "cpu.json").write_text(json.dumps(cpu_doc))
        resp = client.post("/analysis/overhead", json={"profile_path": str(tmp_path / "cpu.json")})
        assert resp.status_code == 200

    @pytest.mark.parametrize("raw", ["../outside.json", "sub/../../outside.json", "OUTSIDE"])
    def test_paths_escaping_root_are_400(self, client, cpu_doc, tmp_path, monkeypatch, raw):
        root = tmp_path / "profiles"
        root.mkdir()
        outside = tmp_path / "outside.json"
        outside.write_text(json.dumps(cpu_doc))
        monkeypatch.setattr(settings, "PROFILES_ROOT", str(root))
        if raw == "OUTSIDE":
            raw = str(outside)
        resp = client.post("/analysis/overhead", json={"profile_path": raw})
        assert resp.status_code == 400
        assert "must stay under the profiles root" in resp.json()["detail"]

    def test_missing_file_is_404(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "PROFILES_ROOT", str(tmp_path))
        resp = client.post("/analysis/overhead", json={"profile_path": "nope.json"})
        assert resp.status_code == 404


class TestErrors:

    def test_no_profile_is_400(self, client):
        resp = client.post("/analysis/overhead", json={})
        assert resp.status_code == 400
        assert "provide 'profile' or 'profile_path'" in resp.json()["detail"]

    def test_empty_checks_is_400(self, client, cpu_doc):
        resp = client.post("/analysis/regression", json={"profile": cpu_doc, "checks": []})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "checks are required"

    def test_empty_bundle_is_400(self, client):
        resp = client.post("/analysis/bundle", json={})
        assert resp.status_code == 400

    def test_malformed_profile_is_422(self, client):
        resp = client.post("/analysis/overhead", json={
            "profile": {"samples": [{"values": ["many"]}]},
        })
        assert resp.status_code == 422

    def test_schema_violation_is_422(self, client, cpu_doc):
        resp = client.post("/analysis/goroutines", json={"profile": cpu_doc, "leak_threshold": 0})
        assert resp.status_code == 422

    def test_negative_alloc_floor_is_422(self, client, heap_doc):
        resp = client.post("/analysis/alloc-paths", json={"profile": heap_doc, "min_percent": -1})
        assert resp.status_code == 422


class TestServicesEndpoints:

    def test_put_get_delete(self, client):
        resp = client.put("/services", json={"services": [
            {"name": "checkout", "environments": ["prod-eu", "staging"]},
            {"name": "batch", "environments": ["dev"]},
        ]})
        assert resp.status_code == 200
        assert resp.json()["cached_at"] is not None

        body = client.get("/services", params={"env": "PROD"}).json()
        assert body["cached"] is True
        assert body["services"] == [
            {"name": "checkout", "environments": ["prod-eu"], "last_seen": None},
        ]

        assert client.delete("/services").status_code == 204
        body = client.get("/services").json()
        assert body["cached"] is False
        assert body["services"] == []


class TestSettings:

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PROFILES_ROOT", "/srv/profiles")
        monkeypatch.setenv("CORRELATION_NODE_COUNT", "7")
        loaded = Settings()
        assert loaded.PROFILES_ROOT == "/srv/profiles"
        assert loaded.CORRELATION_NODE_COUNT == 7
