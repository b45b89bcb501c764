#!/usr/bin/env python3
"""
Municipality Feature Fusion Pipeline with Click CLI

Runs one load cycle (fetch every resource, fuse into the per-municipality
feature table) and reports coverage and data integrity per category.
Configuration values can be overridden from the command line instead of
editing config.yaml.

Usage:
    geofusion run --resources-dir public/resources
    geofusion run --base-url https://example.org/resources --output features.csv
    geofusion run --centroids-out centroids.geojson --integrity-out integrity.json
    geofusion --config interpolation.neighbors=5 run
    geofusion point 41.3874 2.1686

    # Verbose logging:
    geofusion -v run                 # Enable DEBUG level logging
    geofusion --trace run            # Enable TRACE level logging
"""

import os
import sys
from typing import Any, Optional, Tuple

import click
from loguru import logger

from .config_loader import Config
from .errors import LoadFailure, MalformedGeometry
from .export import export_centroids_geojson, export_feature_table_csv
from .geometry import Point
from .integrity import IntegrityRules, export_integrity_report, log_integrity_report, run_integrity_checks
from .orchestrator import FusionOrchestrator, FusionResult, FusionSettings
from .point_analysis import analyze_point
from .repositories import loader_from_config


class ConfigOverride(click.ParamType):
    """Custom parameter type for config overrides."""

    name = "config_override"

    def convert(self, value, param, ctx) -> Tuple[str, Any]:
        if "=" not in value:
            self.fail(f"Invalid format: {value}. Use KEY=VALUE", param, ctx)

        key, val = value.split("=", 1)

        # Auto-parse value type
        if val.lower() in ("true", "false"):
            parsed_val: Any = val.lower() == "true"
        elif val.isdigit():
            parsed_val = int(val)
        elif "." in val and val.replace(".", "", 1).isdigit():
            parsed_val = float(val)
        else:
            parsed_val = val

        return key, parsed_val


def setup_logging(verbose: bool = False, enable_trace: bool = False, log_file: Optional[str] = None) -> None:
    """
    Configure loguru logging with appropriate levels.

    Args:
        verbose: If True, set log level to DEBUG
        enable_trace: If True, enable TRACE level logging for deep debugging
        log_file: Optional file that receives a copy of the log
    """
    logger.remove()

    if enable_trace:
        log_level = "TRACE"
    elif verbose:
        log_level = "DEBUG"
    else:
        log_level = "INFO"

    if enable_trace or verbose:
        log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    else:
        log_format = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"

    logger.add(
        sys.stderr,
        format=log_format,
        level=log_level,
        colorize=True,
        backtrace=enable_trace,
        diagnose=enable_trace,
    )

    if log_file:
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )
        logger.info(f"📄 Also logging to file: {log_file}")

    os.environ["LOGURU_LEVEL"] = log_level
    logger.debug("🔧 Verbose logging enabled (DEBUG level)")
    logger.trace("🔍 Trace logging enabled - maximum detail mode")


def handle_critical_error(error: Exception, context: str = "") -> None:
    """
    Log a critical error, with the full chain in TRACE mode.

    Args:
        error: The exception that occurred
        context: Additional context about where the error occurred
    """
    if os.environ.get("LOGURU_LEVEL", "INFO") == "TRACE":
        logger.opt(exception=error).trace(f"Error context: {context}")

    logger.critical(f"💥 CRITICAL ERROR: {context}")
    logger.critical(f"Exception: {type(error).__name__}: {error}")
    if error.__cause__ is not None:
        logger.critical(f"Caused by: {type(error.__cause__).__name__}: {error.__cause__}")


def run_load_cycle(ctx: click.Context, resources_dir: Optional[str], base_url: Optional[str]) -> FusionResult:
    config: Config = ctx.obj["config"]
    loader = loader_from_config(config, resources_dir=resources_dir, base_url=base_url)
    orchestrator = FusionOrchestrator(loader, config)
    try:
        result = orchestrator.load()
    except LoadFailure as e:
        handle_critical_error(e, "load cycle failed")
        ctx.exit(1)
    return result


def log_coverage(result: FusionResult) -> None:
    """Log how many municipalities each category covers."""
    total = len(result.centroids)
    logger.info("📋 Coverage per category:")
    for category, mapping in result.municipality_data.categories().items():
        share = f" ({len(mapping) / total:.0%})" if total else ""
        logger.info(f"  • {category:<20} {len(mapping):>6,}{share}")
    if result.unavailable:
        logger.warning(f"⚠️ Unavailable: {', '.join(result.unavailable)}")


@click.group()
@click.option("--config-file", type=click.Path(exists=True, dir_okay=False), help="Path to config.yaml")
@click.option(
    "--config",
    "config_overrides",
    multiple=True,
    type=ConfigOverride(),
    help="Set config values using dot notation (e.g., interpolation.power=3)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable DEBUG level logging")
@click.option("--trace", is_flag=True, help="Enable TRACE level logging for deep debugging")
@click.option("--log-file", type=str, help="Also log to specified file")
@click.pass_context
def cli(ctx, config_file, config_overrides, verbose, trace, log_file):
    """
    Municipality feature fusion: centroids, nearest-facility distances,
    IDW climate interpolation and code-normalized joins.
    """
    setup_logging(verbose=verbose, enable_trace=trace, log_file=log_file)

    try:
        config = Config(config_file)
    except (OSError, ValueError) as e:
        handle_critical_error(e, "configuration error")
        ctx.exit(1)

    for key, value in config_overrides:
        config.set(key, value)

    ctx.obj = {"config": config}


@cli.command()
@click.option("--resources-dir", type=click.Path(file_okay=False), help="Read resources from this directory")
@click.option("--base-url", help="Fetch resources over HTTP from this base URL")
@click.option("--output", "output_csv", type=click.Path(dir_okay=False), help="Write the feature table as CSV")
@click.option("--centroids-out", type=click.Path(dir_okay=False), help="Write centroids as GeoJSON")
@click.option("--integrity-out", type=click.Path(dir_okay=False), help="Write the data integrity report as JSON")
@click.pass_context
def run(ctx, resources_dir, base_url, output_csv, centroids_out, integrity_out):
    """Run one load cycle and report the fused feature table."""
    logger.info("🗺️ Municipality Feature Fusion Pipeline")
    result = run_load_cycle(ctx, resources_dir, base_url)
    log_coverage(result)

    report = run_integrity_checks(result, IntegrityRules.from_config(ctx.obj["config"]))
    log_integrity_report(report)

    if output_csv:
        export_feature_table_csv(result.feature_table, output_csv)
    if centroids_out:
        export_centroids_geojson(result.centroids, centroids_out)
    if integrity_out:
        export_integrity_report(report, integrity_out)

    counts = report.by_severity
    click.echo(f"municipalities: {len(result.feature_table)}")
    click.echo(f"integrity: {report.total_issues} issues ({counts['error']} errors, {counts['warning']} warnings)")


@cli.command()
@click.argument("lat", type=float)
@click.argument("lon", type=float)
@click.option("--resources-dir", type=click.Path(file_okay=False), help="Read resources from this directory")
@click.option("--base-url", help="Fetch resources over HTTP from this base URL")
@click.pass_context
def point(ctx, lat, lon, resources_dir, base_url):
    """Show raw feature values at LAT LON."""
    try:
        query = Point(lat=lat, lon=lon)
    except MalformedGeometry as e:
        raise click.BadParameter(str(e))

    result = run_load_cycle(ctx, resources_dir, base_url)
    analysis = analyze_point(result, query, FusionSettings.from_config(ctx.obj["config"]))

    click.echo(f"point: {query.lat:.5f}, {query.lon:.5f}")
    click.echo(f"municipality: {analysis.municipality_code or '-'} {analysis.municipality_name or ''}".rstrip())
    for name, distance in sorted(analysis.distances_km.items()):
        click.echo(f"{name}: {distance:.2f}")
    for name, value in sorted(analysis.climate.items()):
        click.echo(f"{name}: {value:.2f}")


if __name__ == "__main__":
    cli()
