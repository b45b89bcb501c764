import json

import pytest
from loguru import logger

from conftest import square_ring
from geofusion.config_loader import Config
from geofusion.geometry import Boundary, Point
from geofusion.integrity import (
    DEFAULT_INTEGRITY_RULES,
    IntegrityIssue,
    IntegrityReport,
    IntegrityRules,
    export_integrity_report,
    log_integrity_report,
    run_integrity_checks,
)
from geofusion.orchestrator import FusionResult, assemble_feature_table, fuse
from geofusion.records import ForestCover, MunicipalityData, VoteSentiment


def codes(n):
    return [f"080{i:02d}" for i in range(n)]


def build_result(data, municipality_codes, facility_points=None, unavailable=()):
    """FusionResult over small square municipalities, one per code."""
    boundaries = [
        Boundary(code=code, polygons=[[[tuple(v) for v in square_ring(2.0 + i * 0.01, 41.0, 0.004)]]])
        for i, code in enumerate(municipality_codes)
    ]
    return FusionResult(
        municipality_data=data,
        feature_table=assemble_feature_table(data, boundaries),
        centroids={},
        boundaries=boundaries,
        facility_points=facility_points or {},
        unavailable=list(unavailable),
    )


def forest(values):
    """MunicipalityData with forest_pct per code, in code order."""
    return MunicipalityData(
        forest={code: ForestCover(code=code, forest_pct=value) for code, value in zip(codes(len(values)), values)}
    )


class TestLoadCycleReport:
    @pytest.fixture
    def report(self, raw_resources):
        return run_integrity_checks(fuse(raw_resources), current_year=2024)

    def test_low_coverage_lists_missing_codes(self, report):
        issue = report.find("votes", "coverage.low")
        assert issue.severity == "error"
        assert issue.affected_count == 1
        assert issue.sample_codes == ["25120"]

    def test_fully_covered_layers_have_no_coverage_issue(self, report):
        for layer in ("climate", "transit", "health"):
            assert report.find(layer, "coverage.low") is None
            assert report.find(layer, "coverage.partial") is None

    def test_vote_totals(self, report):
        assert report.find("votes", "votes.inconsistentTotals").sample_codes == ["08019", "17079"]

    def test_missing_turnout(self, report):
        assert report.find("votes", "turnout.zero").sample_codes == ["17079"]

    def test_unavailable_feed(self, report):
        issue = report.find("schools", "feed.missing")
        assert issue.severity == "error"
        assert issue.sample_codes == []
        assert report.find("schools", "coverage.low").affected_count == 3

    def test_empty_feed_is_not_missing(self, report):
        assert report.find("amenities", "feed.missing") is None
        assert report.find("amenities", "coverage.low") is not None

    def test_recent_years_are_not_stale(self, report):
        assert report.find("votes", "votes.stale") is None

    def test_counts(self, report):
        assert report.by_severity == {"info": 0, "warning": 2, "error": 11}
        assert report.total_issues == 13

    def test_grouped_by_layer(self, report):
        grouped = report.by_layer()
        assert list(grouped)[0] == "votes"
        assert sum(len(issues) for issues in grouped.values()) == report.total_issues

    def test_stale_years(self, raw_resources):
        report = run_integrity_checks(fuse(raw_resources), current_year=2040)
        assert report.find("votes", "votes.stale").sample_codes == ["08019", "17079"]
        assert report.find("crime", "crime.stale").sample_codes == ["08019"]
        assert report.find("rental_prices", "rental_prices.stale").severity == "warning"

    def test_nothing_loaded(self):
        report = run_integrity_checks(fuse({}), current_year=2024)
        assert report.find("global", "municipalities.missing").severity == "error"
        assert {i.layer for i in report.issues if i.check == "feed.missing"} == {
            "transit",
            "health",
            "schools",
            "amenities",
        }
        assert not [i for i in report.issues if i.check.startswith("coverage")]


class TestCoverage:
    def test_partial_coverage_is_a_warning(self):
        municipality_codes = codes(20)
        report = run_integrity_checks(build_result(forest([30.0 + i for i in range(19)]), municipality_codes))
        issue = report.find("forest", "coverage.partial")
        assert issue.severity == "warning"
        assert issue.sample_codes == ["08019"]

    def test_threshold_from_rules(self):
        result = build_result(forest([30.0 + i for i in range(19)]), codes(20))
        report = run_integrity_checks(result, IntegrityRules(required_coverage_pct=99.0))
        assert report.find("forest", "coverage.low").affected_count == 1

    def test_sample_codes_are_capped(self):
        report = run_integrity_checks(build_result(MunicipalityData(), codes(20)))
        issue = report.find("terrain", "coverage.low")
        assert issue.affected_count == 20
        assert issue.sample_codes == codes(8)


class TestFieldChecks:
    def test_blank_share_above_threshold_is_an_error(self):
        report = run_integrity_checks(build_result(forest([30.0, 31.0, None, 33.0, 34.0]), codes(5)))
        issue = report.find("forest", "forest_pct.blank")
        assert issue.severity == "error"
        assert issue.sample_codes == ["08002"]

    def test_few_blanks_are_a_warning(self):
        values = [30.0 + i for i in range(10)]
        values[4] = None
        report = run_integrity_checks(build_result(forest(values), codes(10)))
        assert report.find("forest", "forest_pct.blank").severity == "warning"

    def test_out_of_range(self):
        report = run_integrity_checks(build_result(forest([30.0, 120.0, -1.0]), codes(3)))
        issue = report.find("forest", "forest_pct.range")
        assert issue.severity == "error"
        assert issue.sample_codes == ["08001", "08002"]

    def test_outlier(self):
        values = [30.0] * 19 + [95.0]
        report = run_integrity_checks(build_result(forest(values), codes(20)))
        issue = report.find("forest", "distribution.outliers")
        assert issue.sample_codes == ["08019"]
        assert report.find("forest", "forest_pct.range") is None

    def test_outlier_threshold_from_rules(self):
        result = build_result(forest([30.0, 31.0, 29.0, 30.0, 30.5, 60.0]), codes(6))
        assert run_integrity_checks(result).find("forest", "distribution.outliers") is None
        report = run_integrity_checks(result, IntegrityRules(max_outlier_z_score=2.0))
        assert report.find("forest", "distribution.outliers").sample_codes == ["08005"]

    def test_constant_values(self):
        report = run_integrity_checks(build_result(forest([30.0] * 6), codes(6)))
        assert report.find("forest", "distribution.constant").affected_count == 6

    def test_too_few_values_for_distribution(self):
        report = run_integrity_checks(build_result(forest([30.0] * 4), codes(4)))
        assert report.find("forest", "distribution.constant") is None

    def test_consistent_votes(self):
        votes = {
            code: VoteSentiment(
                code=code, left_pct=50.0, right_pct=48.0, independence_pct=45.0, unionist_pct=55.0, turnout_pct=60.0
            )
            for code in codes(3)
        }
        report = run_integrity_checks(build_result(MunicipalityData(votes=votes), codes(3)))
        assert report.find("votes", "votes.inconsistentTotals") is None
        assert report.find("votes", "turnout.zero") is None


class TestFacilities:
    def test_negative_and_huge_distances(self):
        data = MunicipalityData(transit_dist_km={"08000": -1.0, "08001": 250.0, "08002": 3.0})
        report = run_integrity_checks(build_result(data, codes(3), {"transit": [Point(lat=41.0, lon=2.0)]}))
        assert report.find("transit", "distance.negative").sample_codes == ["08000"]
        huge = report.find("transit", "distance.huge")
        assert huge.severity == "warning"
        assert huge.sample_codes == ["08001"]

    def test_distance_outlier(self):
        distances = {code: 2.0 + i % 3 for i, code in enumerate(codes(20))}
        distances["08019"] = 150.0
        report = run_integrity_checks(build_result(MunicipalityData(healthcare_dist_km=distances), codes(20)))
        assert report.find("health", "distribution.outliers").sample_codes == ["08019"]
        assert report.find("health", "distance.huge") is None

    def test_duplicate_points(self):
        points = [Point(lat=41.0, lon=2.0), Point(lat=42.0, lon=2.0), Point(lat=41.000001, lon=2.0)]
        report = run_integrity_checks(build_result(MunicipalityData(), codes(1), {"health": points}))
        issue = report.find("health", "geo.duplicatePoint")
        assert issue.severity == "warning"
        assert issue.sample_codes == ["idx:0->2"]

    def test_duplicate_precision_from_rules(self):
        points = [Point(lat=41.0, lon=2.0), Point(lat=41.000001, lon=2.0)]
        result = build_result(MunicipalityData(), codes(1), {"health": points})
        report = run_integrity_checks(result, IntegrityRules(duplicate_coord_decimals=6))
        assert report.find("health", "geo.duplicatePoint") is None


class TestRules:
    def test_defaults(self):
        assert DEFAULT_INTEGRITY_RULES.required_coverage_pct == 90.0
        assert DEFAULT_INTEGRITY_RULES.max_blank_pct_per_layer == 15.0
        assert DEFAULT_INTEGRITY_RULES.max_outlier_z_score == 4.0
        assert DEFAULT_INTEGRITY_RULES.duplicate_coord_decimals == 5
        assert DEFAULT_INTEGRITY_RULES.stale_year_threshold == 6

    def test_from_config(self):
        rules = IntegrityRules.from_config(Config(data={"integrity": {"required_coverage_pct": 50}}))
        assert rules.required_coverage_pct == 50.0
        assert rules.stale_year_threshold == 6

    def test_config_threshold_changes_severity(self, raw_resources):
        rules = IntegrityRules.from_config(Config(data={"integrity": {"required_coverage_pct": 50}}))
        report = run_integrity_checks(fuse(raw_resources), rules, current_year=2024)
        assert report.find("votes", "coverage.partial").severity == "warning"
        assert report.find("forest", "coverage.low") is not None


class TestReportOutput:
    def test_export(self, raw_resources, tmp_path):
        report = run_integrity_checks(fuse(raw_resources), current_year=2024)
        path = export_integrity_report(report, tmp_path / "reports" / "integrity.json")
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved["total_issues"] == report.total_issues
        assert saved["by_severity"] == report.by_severity
        assert {"layer", "severity", "check", "message", "affected_count", "sample_codes"} <= set(saved["issues"][0])

    def test_log_clean_report(self):
        messages = []
        logger.add(messages.append, level="INFO", format="{level} {message}")
        log_integrity_report(IntegrityReport(generated_at="2024-01-01T00:00:00"))
        assert len(messages) == 1
        assert messages[0].startswith("SUCCESS")

    def test_log_issue_levels(self):
        messages = []
        logger.add(messages.append, level="INFO", format="{level} {message}")
        report = IntegrityReport(
            generated_at="2024-01-01T00:00:00",
            issues=[
                IntegrityIssue("votes", "error", "coverage.low", "low", 2, ["08019", "17079"]),
                IntegrityIssue("health", "warning", "geo.duplicatePoint", "dup", 1, ["idx:0->1"]),
            ],
        )
        log_integrity_report(report)
        levels = [m.split(" ", 1)[0] for m in messages]
        assert levels == ["INFO", "ERROR", "WARNING"]
        assert "08019, 17079" in messages[1]
