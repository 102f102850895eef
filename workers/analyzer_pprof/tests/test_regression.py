"""
Tests for percentage-ceiling regression checks.
"""
import pytest

from analyzer_pprof.core.regression import check_regressions
from analyzer_pprof.io.schema import RegressionCheckSpec


def _check(function, max_pct, metric="flat_pct"):
    return RegressionCheckSpec(function=function, metric=metric, max=max_pct)


class TestCheckRegressions:

    def test_passing_check(self, cpu_profile):
        report = check_regressions(cpu_profile, [_check(r"api\.compute", 50)])
        assert report.passed is True
        assert report.sample_type == "cpu"
        result = report.checks[0]
        assert result.actual == pytest.approx(40.0)
        assert result.matched_function == "github.com/acme/svc/api.compute"
        assert result.message is None

    def test_failing_check(self, cpu_profile):
        report = check_regressions(cpu_profile, [_check("otel", 10)])
        assert report.passed is False
        result = report.checks[0]
        assert result.passed is False
        assert result.message == "otel flat_pct (60.00%) exceeds threshold (10.00%)"

    def test_cum_metric(self, cpu_profile):
        report = check_regressions(cpu_profile, [_check(r"\(\*Server\)\.handle", 90, "cum_pct")])
        assert report.checks[0].actual == pytest.approx(100.0)
        assert report.passed is False

    def test_best_match_among_functions(self, cpu_profile):
        report = check_regressions(cpu_profile, [_check("github.com/acme", 100)])
        assert report.checks[0].actual == pytest.approx(40.0)

    def test_no_match_is_zero(self, cpu_profile):
        result = check_regressions(cpu_profile, [_check("nothing-here", 0)]).checks[0]
        assert result.actual == 0.0
        assert result.passed is True
        assert result.matched_function is None

    def test_report_fails_if_any_check_fails(self, cpu_profile):
        report = check_regressions(cpu_profile, [_check("compute", 50), _check("otel", 50)])
        assert [c.passed for c in report.checks] == [True, False]
        assert report.passed is False

    def test_unknown_sample_type_warns(self, cpu_profile):
        report = check_regressions(cpu_profile, [_check("x", 1)], sample_type="wall")
        assert report.sample_type == "cpu"
        assert any("'wall' not found" in w for w in report.warnings)


class TestValidation:

    @pytest.mark.parametrize("checks,message", [
        ([], "checks are required"),
        ([RegressionCheckSpec(function="", max=1)], "check function is required"),
        ([RegressionCheckSpec(function="x", metric="p99", max=1)], "unsupported metric"),
        ([RegressionCheckSpec(function="(", max=1)], "invalid function pattern"),
    ])
    def test_rejected(self, cpu_profile, checks, message):
        with pytest.raises(ValueError, match=message):
            check_regressions(cpu_profile, checks)
