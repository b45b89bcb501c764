"""
Data Integrity Checks for a fused load cycle

Inspects the feature table of a FusionResult layer by layer and reports what
looks wrong with the upstream feeds:

- coverage of each layer against the municipality boundary codes
- share of blank values per checked field
- values outside their physically possible range
- z-score outliers and near-constant distributions
- vote totals that do not add up, zero turnout, stale vote years
- negative or very large facility distances
- missing facility feeds and duplicate facility coordinates

The report is advisory: nothing here changes the fused data.

Usage:
    from geofusion.integrity import run_integrity_checks

    report = run_integrity_checks(result)
    for issue in report.issues:
        print(issue.layer, issue.severity, issue.check, issue.message)
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Set, Union

import numpy as np
import pandas as pd
from loguru import logger

from .config_loader import Config
from .export import ensure_output_directory, feature_table_to_dataframe
from .geocodes import CODE_LENGTH, normalize
from .geometry import Point
from .orchestrator import FACILITY_RESOURCES, FusionResult

SEVERITIES = ("info", "warning", "error")
SAMPLE_SIZE = 8
MIN_OUTLIER_VALUES = 5
HUGE_DISTANCE_KM = 200.0
VOTE_TOTAL_TOLERANCE = 8.0


@dataclass
class IntegrityRules:
    """Thresholds for the integrity checks."""

    required_coverage_pct: float = 90.0
    max_blank_pct_per_layer: float = 15.0
    max_outlier_z_score: float = 4.0
    duplicate_coord_decimals: int = 5
    stale_year_threshold: int = 6

    @classmethod
    def from_config(cls, config: Config) -> "IntegrityRules":
        defaults = cls()
        return cls(
            required_coverage_pct=float(config.get("integrity.required_coverage_pct", defaults.required_coverage_pct)),
            max_blank_pct_per_layer=float(
                config.get("integrity.max_blank_pct_per_layer", defaults.max_blank_pct_per_layer)
            ),
            max_outlier_z_score=float(config.get("integrity.max_outlier_z_score", defaults.max_outlier_z_score)),
            duplicate_coord_decimals=int(
                config.get("integrity.duplicate_coord_decimals", defaults.duplicate_coord_decimals)
            ),
            stale_year_threshold=int(config.get("integrity.stale_year_threshold", defaults.stale_year_threshold)),
        )


DEFAULT_INTEGRITY_RULES = IntegrityRules()


class FieldCheck(NamedTuple):
    name: str
    minimum: Optional[float] = None
    maximum: Optional[float] = None


# layer -> numeric fields checked for blanks, range and outliers
FIELD_CHECKS: Dict[str, List[FieldCheck]] = {
    "votes": [FieldCheck("left_pct", 0, 100)],
    "terrain": [FieldCheck("avg_slope_deg", 0, 90), FieldCheck("avg_elevation_m", -100, 4000)],
    "forest": [FieldCheck("forest_pct", 0, 100)],
    "air_quality": [FieldCheck("pm10", 0, 200), FieldCheck("no2", 0, 200)],
    "crime": [FieldCheck("rate_per_thousand", 0, 300)],
    "rental_prices": [FieldCheck("avg_eur_month", 0, 10000)],
    "employment": [FieldCheck("unemployment_pct", 0, 100)],
    "internet": [FieldCheck("fiber_pct", 0, 100)],
    "climate": [FieldCheck("avg_temp_c", -40, 55), FieldCheck("avg_rainfall_mm", 0, 4000)],
}

# layers whose records carry a publication year
YEAR_LAYERS = ("votes", "crime", "rental_prices")


@dataclass
class IntegrityIssue:
    """One finding about one layer."""

    layer: str
    severity: str  # 'info', 'warning', 'error'
    check: str
    message: str
    affected_count: int
    sample_codes: List[str] = field(default_factory=list)


@dataclass
class IntegrityReport:
    generated_at: str
    issues: List[IntegrityIssue] = field(default_factory=list)

    @property
    def total_issues(self) -> int:
        return len(self.issues)

    @property
    def by_severity(self) -> Dict[str, int]:
        counts = {severity: 0 for severity in SEVERITIES}
        for issue in self.issues:
            counts[issue.severity] += 1
        return counts

    def by_layer(self) -> Dict[str, List[IntegrityIssue]]:
        """Issues grouped by layer, in the order layers were first reported."""
        grouped: Dict[str, List[IntegrityIssue]] = {}
        for issue in self.issues:
            grouped.setdefault(issue.layer, []).append(issue)
        return grouped

    def find(self, layer: str, check: str) -> Optional[IntegrityIssue]:
        for issue in self.issues:
            if issue.layer == layer and issue.check == check:
                return issue
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "total_issues": self.total_issues,
            "by_severity": self.by_severity,
            "issues": [asdict(issue) for issue in self.issues],
        }


class _IssueCollector:
    def __init__(self):
        self.issues: List[IntegrityIssue] = []

    def add(self, layer: str, severity: str, check: str, message: str, affected: Sequence[str]) -> None:
        affected = list(affected)
        self.issues.append(
            IntegrityIssue(
                layer=layer,
                severity=severity,
                check=check,
                message=message,
                affected_count=len(affected),
                sample_codes=affected[:SAMPLE_SIZE],
            )
        )


def _boundary_codes(result: FusionResult) -> Set[str]:
    return {normalize(b.code) for b in result.boundaries if isinstance(b.code, str) and len(b.code) >= CODE_LENGTH}


def _numeric_column(df: pd.DataFrame, column: str, codes: Sequence[str]) -> pd.Series:
    """Column restricted to ``codes`` as floats; NaN where missing or non-numeric."""
    if column not in df.columns:
        return pd.Series(np.nan, index=pd.Index(codes, name="code"), dtype=float)
    values = pd.to_numeric(df[column].reindex(codes), errors="coerce").astype(float)
    return values.where(np.isfinite(values))


def check_coverage(
    layer: str, municipality_codes: Set[str], layer_codes: Set[str], rules: IntegrityRules, out: _IssueCollector
) -> None:
    total = len(municipality_codes)
    if total == 0:
        return
    missing = sorted(municipality_codes - layer_codes)
    coverage_pct = (total - len(missing)) / total * 100
    if coverage_pct < rules.required_coverage_pct:
        out.add(
            layer,
            "error",
            "coverage.low",
            f"Coverage {coverage_pct:.1f}% is below threshold {rules.required_coverage_pct:g}%",
            missing,
        )
    elif missing:
        out.add(
            layer,
            "warning",
            "coverage.partial",
            f"Partial coverage {coverage_pct:.1f}% ({len(missing)} municipalities missing)",
            missing,
        )


def check_outliers(layer: str, metric: str, values: pd.Series, rules: IntegrityRules, out: _IssueCollector) -> None:
    """Flag |z| above the rule threshold; a zero spread is reported as a constant feed."""
    values = values.dropna()
    if len(values) < MIN_OUTLIER_VALUES:
        return
    std = values.std(ddof=0)
    if not np.isfinite(std) or std == 0:
        out.add(
            layer,
            "warning",
            "distribution.constant",
            f"{metric} has near-constant values; check upstream feed",
            sorted(values.index),
        )
        return
    z_scores = (values - values.mean()) / std
    outliers = sorted(z_scores[z_scores.abs() > rules.max_outlier_z_score].index)
    if outliers:
        out.add(
            layer,
            "warning",
            "distribution.outliers",
            f"{metric} has {len(outliers)} outliers (|z| > {rules.max_outlier_z_score:g})",
            outliers,
        )


def check_fields(
    layer: str, df: pd.DataFrame, layer_codes: Sequence[str], rules: IntegrityRules, out: _IssueCollector
) -> None:
    """Blank share, impossible values and outliers for every checked field of a layer."""
    if not layer_codes:
        return
    for check in FIELD_CHECKS.get(layer, []):
        values = _numeric_column(df, f"{layer}_{check.name}", layer_codes)
        blanks = sorted(values[values.isna()].index)
        blank_pct = len(blanks) / len(layer_codes) * 100
        if blank_pct > rules.max_blank_pct_per_layer:
            out.add(
                layer,
                "error",
                f"{check.name}.blank",
                f"{check.name} blanks are {blank_pct:.1f}% (> {rules.max_blank_pct_per_layer:g}%)",
                blanks,
            )
        elif blanks:
            out.add(layer, "warning", f"{check.name}.blank", f"{check.name} has blank values", blanks)

        out_of_range = pd.Series(False, index=values.index)
        if check.minimum is not None:
            out_of_range |= values < check.minimum
        if check.maximum is not None:
            out_of_range |= values > check.maximum
        if out_of_range.any():
            out.add(
                layer,
                "error",
                f"{check.name}.range",
                f"{check.name} contains impossible values",
                sorted(values[out_of_range].index),
            )

        check_outliers(layer, check.name, values, rules, out)


def check_votes(df: pd.DataFrame, vote_codes: Sequence[str], out: _IssueCollector) -> None:
    """Vote shares that do not add up to ~100 and zero or missing turnout."""
    if not vote_codes:
        return
    left = _numeric_column(df, "votes_left_pct", vote_codes).fillna(0)
    right = _numeric_column(df, "votes_right_pct", vote_codes).fillna(0)
    independence = _numeric_column(df, "votes_independence_pct", vote_codes).fillna(0)
    unionist = _numeric_column(df, "votes_unionist_pct", vote_codes).fillna(0)
    turnout = _numeric_column(df, "votes_turnout_pct", vote_codes).fillna(0)

    inconsistent = ((left + right - 100).abs() > VOTE_TOTAL_TOLERANCE) | (
        (independence + unionist - 100).abs() > VOTE_TOTAL_TOLERANCE
    )
    if inconsistent.any():
        out.add(
            "votes",
            "warning",
            "votes.inconsistentTotals",
            "Vote totals look inconsistent (left+right or independence+unionist far from 100)",
            sorted(inconsistent[inconsistent].index),
        )

    zero_turnout = turnout == 0
    if zero_turnout.any():
        out.add(
            "votes",
            "warning",
            "turnout.zero",
            "turnout_pct is zero or missing (likely missing turnout feed)",
            sorted(zero_turnout[zero_turnout].index),
        )


def check_stale_years(
    layer: str,
    df: pd.DataFrame,
    layer_codes: Sequence[str],
    current_year: int,
    rules: IntegrityRules,
    out: _IssueCollector,
) -> None:
    if not layer_codes:
        return
    years = _numeric_column(df, f"{layer}_year", layer_codes)
    stale = sorted(years[(current_year - years) > rules.stale_year_threshold].index)
    if stale:
        out.add(
            layer,
            "warning",
            f"{layer}.stale",
            f"{layer} records older than {rules.stale_year_threshold} years",
            stale,
        )


def check_distances(
    layer: str, df: pd.DataFrame, distance_codes: Sequence[str], rules: IntegrityRules, out: _IssueCollector
) -> None:
    if not distance_codes:
        return
    distances = _numeric_column(df, FACILITY_RESOURCES[layer], distance_codes).dropna()
    negative = sorted(distances[distances < 0].index)
    huge = sorted(distances[distances > HUGE_DISTANCE_KM].index)
    if negative:
        out.add(layer, "error", "distance.negative", "Negative distances found", negative)
    if huge:
        out.add(layer, "warning", "distance.huge", f"Very large distances found (>{HUGE_DISTANCE_KM:g} km)", huge)
    check_outliers(layer, "distance_km", distances, rules, out)


def check_facility_points(
    layer: str, points: Optional[List[Point]], rules: IntegrityRules, out: _IssueCollector
) -> None:
    """Missing feed, or several facilities at the same rounded coordinates."""
    if points is None:
        out.add(layer, "error", "feed.missing", "FeatureCollection is missing", [])
        return
    seen: Dict[tuple, int] = {}
    duplicates: List[str] = []
    decimals = rules.duplicate_coord_decimals
    for idx, point in enumerate(points):
        key = (round(point.lat, decimals), round(point.lon, decimals))
        if key in seen:
            duplicates.append(f"idx:{seen[key]}->{idx}")
        seen[key] = idx
    if duplicates:
        out.add(layer, "warning", "geo.duplicatePoint", "Duplicate point coordinates detected", duplicates)


def run_integrity_checks(
    result: FusionResult, rules: Optional[IntegrityRules] = None, current_year: Optional[int] = None
) -> IntegrityReport:
    """
    Build the integrity report for one load cycle.

    Args:
        result: Output of a load cycle
        rules: Thresholds (DEFAULT_INTEGRITY_RULES if None)
        current_year: Reference year for staleness (this year if None)

    Returns:
        IntegrityReport with one issue per failed check
    """
    rules = rules or DEFAULT_INTEGRITY_RULES
    current_year = current_year or datetime.now().year
    out = _IssueCollector()

    df = feature_table_to_dataframe(result.feature_table)
    categories = result.municipality_data.categories()
    municipality_codes = _boundary_codes(result)

    if not municipality_codes:
        out.add("global", "error", "municipalities.missing", "Municipality geometry dataset is missing", [])

    for layer in FIELD_CHECKS:
        layer_codes = sorted(categories[layer])
        check_coverage(layer, municipality_codes, set(layer_codes), rules, out)
        check_fields(layer, df, layer_codes, rules, out)
        if layer == "votes":
            check_votes(df, layer_codes, out)
        if layer in YEAR_LAYERS:
            check_stale_years(layer, df, layer_codes, current_year, rules, out)

    for layer, distance_field in FACILITY_RESOURCES.items():
        distance_codes = sorted(categories[distance_field])
        check_coverage(layer, municipality_codes, set(distance_codes), rules, out)
        check_distances(layer, df, distance_codes, rules, out)
        points = None if layer in result.unavailable else result.facility_points.get(layer, [])
        check_facility_points(layer, points, rules, out)

    report = IntegrityReport(generated_at=datetime.now().isoformat(timespec="seconds"), issues=out.issues)
    logger.debug(f"  Integrity checks: {report.total_issues} issue(s) {report.by_severity}")
    return report


def log_integrity_report(report: IntegrityReport) -> None:
    """Log a per-layer summary of the report."""
    counts = report.by_severity
    if not report.issues:
        logger.success("✅ Integrity checks passed: no issues")
        return

    logger.info(
        f"🩺 Integrity: {report.total_issues} issue(s) ({counts['error']} errors, {counts['warning']} warnings)"
    )
    for layer, issues in report.by_layer().items():
        for issue in issues:
            sample = f" e.g. {', '.join(issue.sample_codes)}" if issue.sample_codes else ""
            message = f"  • {layer:<14} {issue.check}: {issue.message} [{issue.affected_count}]{sample}"
            if issue.severity == "error":
                logger.error(message)
            elif issue.severity == "warning":
                logger.warning(message)
            else:
                logger.info(message)


def export_integrity_report(report: IntegrityReport, output_path: Union[str, Path]) -> Path:
    """Write the report as JSON."""
    output_path = ensure_output_directory(output_path)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
    logger.info(f"💾 Integrity report saved to {output_path}")
    return output_path
