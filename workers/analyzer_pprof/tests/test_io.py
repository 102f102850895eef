"""
Tests for profile loading and report writing.
"""
import gzip
import json

import pytest
from pydantic import ValidationError

from analyzer_pprof import ANALYZER_VERSION, PACKAGE_NAME, SCHEMA_VERSION
from analyzer_pprof.core.overhead import detect_overhead
from analyzer_pprof.io.loader import load_profile, profile_from_dict, profile_to_dict
from analyzer_pprof.io.writer import render_report, write_report

PROFILE_DOC = {
    "sample_types": [{"type": "goroutine", "unit": "count"}],
    "samples": [
        {
            "values": [3],
            "locations": [
                {"id": 1, "lines": [{"function": {"name": "runtime.gopark"}, "line": 0}]},
                {"id": 2, "lines": [{"function": {"name": "main.loop", "filename": "main.go"}, "line": 9}]},
            ],
            "labels": {"state": ["waiting"]},
        }
    ],
    "period": 1,
}


class TestLoader:

    def test_from_dict(self):
        prof = profile_from_dict(PROFILE_DOC)
        assert prof.sample_types[0].type == "goroutine"
        assert prof.samples[0].locations[1].lines[0].function.filename == "main.go"
        assert prof.samples[0].labels == {"state": ["waiting"]}

    def test_dict_round_trip(self):
        prof = profile_from_dict(PROFILE_DOC)
        assert profile_from_dict(profile_to_dict(prof)) == prof

    def test_load_json_and_gz(self, tmp_path):
        plain = tmp_path / "goroutine.json"
        plain.write_text(json.dumps(PROFILE_DOC))
        packed = tmp_path / "goroutine.json.gz"
        with gzip.open(packed, "wt", encoding="utf-8") as fh:
            json.dump(PROFILE_DOC, fh)

        assert load_profile(plain) == load_profile(packed)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Profile not found"):
            load_profile(tmp_path / "nope.json")

    def test_malformed_document(self):
        with pytest.raises(ValidationError):
            profile_from_dict({"samples": [{"values": ["many"]}]})


class TestWriter:

    def test_contract_fields(self, cpu_profile, policy):
        doc = json.loads(render_report(detect_overhead(cpu_profile, policy)))
        assert doc["package_name"] == PACKAGE_NAME
        assert doc["analyzer_version"] == ANALYZER_VERSION
        assert doc["schema_version"] == SCHEMA_VERSION
        assert isinstance(doc["warnings"], list)

    def test_write_is_deterministic(self, cpu_profile, policy, tmp_path):
        first = write_report(detect_overhead(cpu_profile, policy), tmp_path / "a", "overhead")
        second = write_report(detect_overhead(cpu_profile, policy), tmp_path / "b", "overhead")

        assert first.name == "overhead.json"
        assert first.read_bytes() == second.read_bytes()
        assert first.read_text().endswith("}\n")
