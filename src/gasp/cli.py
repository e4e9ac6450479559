"""
Command-line interface for GASP.

Provides commands for analyzing OSCAR Details exports and managing the
user configuration file.
"""

import json
import logging

from datetime import datetime
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version
from pathlib import Path
from typing import Any

import click

from pydantic import ValidationError

from gasp.analysis.false_negatives import FALSE_NEGATIVE_PRESETS, false_negative_preset
from gasp.analysis.service import load_analysis_settings
from gasp.analysis.types import ClusterParams
from gasp.config import (
    CONFIG_SECTIONS,
    get_config_path,
    load_config,
    parse_config_value,
    set_config_value,
    unset_config_value,
)
from gasp.constants import CLI_CONSOLE_LOG_FORMAT, EVENT_KIND_NAMES
from gasp.details import read_details_csv, write_clusters_csv
from gasp.logging_config import setup_logging
from gasp.worker import AnalysisOutcome, AnalyticsWorker

logger = logging.getLogger(__name__)

try:
    __version__ = get_version("gasp")
except PackageNotFoundError:
    __version__ = "dev"


def version_callback(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    """Show version."""
    if not value or ctx.resilient_parsing:
        return
    click.echo(f"gasp, version {__version__}")
    ctx.exit()


@click.group()
@click.option(
    "--version",
    is_flag=True,
    callback=version_callback,
    expose_value=False,
    is_eager=True,
    help="Show version",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """GASP: Apnea cluster and flow limitation analysis for OSCAR exports"""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(verbose=verbose, console_format=CLI_CONSOLE_LOG_FORMAT)


def _cluster_params(base: ClusterParams, overrides: dict[str, Any]) -> ClusterParams:
    given = {key: value for key, value in overrides.items() if value is not None}
    if not given:
        return base
    try:
        return ClusterParams.model_validate({**base.model_dump(), **given})
    except ValidationError as e:
        problems = "; ".join(
            f"{err['loc'][0]}: {err['msg']}" for err in e.errors() if err["loc"]
        )
        raise click.BadParameter(problems) from e


def _print_summary(outcome: AnalysisOutcome) -> None:
    if not outcome.clusters:
        click.echo("No apnea clusters found")
    else:
        click.echo(
            f"\n{'#':<4} {'Start':<20} {'End':<20} {'Duration':<10} "
            f"{'Events':<7} {'Severity':<8}"
        )
        click.echo("=" * 72)
        for index, cluster in enumerate(outcome.clusters, start=1):
            severity = "N/A"
            if cluster.severity is not None:
                severity = f"{cluster.severity:.2f}"
            click.echo(
                f"{index:<4} {cluster.start:%Y-%m-%d %H:%M:%S}  "
                f"{cluster.end:%Y-%m-%d %H:%M:%S}  "
                f"{cluster.duration_sec:>7.1f}s   {cluster.count:<7} {severity:>8}"
            )
            kinds: dict[str, int] = {}
            for event in cluster.events:
                name = EVENT_KIND_NAMES.get(event.kind or "", event.kind or "Unknown")
                kinds[name] = kinds.get(name, 0) + 1
            breakdown = ", ".join(f"{name}: {n}" for name, n in sorted(kinds.items()))
            click.echo(f"     {breakdown}")

    if outcome.false_negatives:
        click.echo(f"\nPotential false negatives: {len(outcome.false_negatives)}")
        for window in outcome.false_negatives:
            click.echo(
                f"  • {window.start:%Y-%m-%d %H:%M:%S} - {window.end:%H:%M:%S} "
                f"({window.duration_sec:.0f}s, peak FLG {window.confidence:.2f})"
            )
    else:
        click.echo("\nNo potential false negatives")


@cli.command()
@click.argument("details_csv", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--date",
    "day",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Only analyze rows from this date (YYYY-MM-DD)",
)
@click.option("--gap-sec", type=float, help="Max gap (s) merging apnea events")
@click.option("--bridge-threshold", type=float, help="Min FLG level for bridging")
@click.option("--bridge-sec", type=float, help="Max gap (s) bridged by FLG")
@click.option("--min-count", type=int, help="Min events per cluster")
@click.option("--min-total-sec", type=float, help="Min summed event time (s)")
@click.option("--max-cluster-sec", type=float, help="Max cluster span (s)")
@click.option("--min-density", type=float, help="Min events per minute")
@click.option(
    "--fn-preset",
    type=click.Choice(list(FALSE_NEGATIVE_PRESETS)),
    help="False-negative detection preset",
)
@click.option(
    "--export",
    "export_path",
    type=click.Path(dir_okay=False, writable=True),
    help="Write clusters to this CSV file",
)
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.option("--in-process", is_flag=True, help="Analyze without a worker process")
@click.option("--timeout", type=float, help="Give up after this many seconds")
@click.pass_context
def analyze(
    ctx: click.Context,
    details_csv: str,
    day: datetime | None,
    gap_sec: float | None,
    bridge_threshold: float | None,
    bridge_sec: float | None,
    min_count: int | None,
    min_total_sec: float | None,
    max_cluster_sec: float | None,
    min_density: float | None,
    fn_preset: str | None,
    export_path: str | None,
    as_json: bool,
    in_process: bool,
    timeout: float | None,
) -> None:
    """Find apnea clusters and unannotated flow limitation in a Details CSV."""
    try:
        settings = load_analysis_settings()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    params = _cluster_params(
        settings.cluster_params,
        {
            "gap_sec": gap_sec,
            "bridge_threshold": bridge_threshold,
            "bridge_sec": bridge_sec,
            "min_count": min_count,
            "min_total_sec": min_total_sec,
            "max_cluster_sec": max_cluster_sec,
            "min_density": min_density,
        },
    )
    fn_params = false_negative_preset(fn_preset) if fn_preset else settings.fn_params

    try:
        rows = read_details_csv(details_csv, day.date() if day else None)
    except (OSError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if not rows:
        click.echo("No detail rows to analyze", err=True)

    verbose = bool(ctx.obj and ctx.obj.get("verbose"))
    with AnalyticsWorker(
        in_process=in_process or settings.in_process,
        configure_logging=True,
        verbose=verbose,
        console_format=CLI_CONSOLE_LOG_FORMAT,
    ) as worker:
        outcome = worker.run(
            rows, params, fn_params, timeout=timeout or settings.timeout_sec
        )

    if not outcome.ok:
        raise click.ClickException(f"Analysis failed ({outcome.error})")

    if as_json:
        data = {
            "clusters": [
                c.model_dump(mode="json", by_alias=True) for c in outcome.clusters
            ],
            "falseNegatives": [
                w.model_dump(mode="json", by_alias=True)
                for w in outcome.false_negatives
            ],
        }
        click.echo(json.dumps(data, indent=2))
    else:
        _print_summary(outcome)

    if export_path:
        write_clusters_csv(outcome.clusters, Path(export_path))
        click.echo(
            f"✓ Exported {len(outcome.clusters)} clusters to {export_path}",
            err=as_json,
        )


@cli.group()
def config() -> None:
    """Configuration management commands."""
    pass


@config.command("path")
def config_path_cmd() -> None:
    """Show the config file location."""
    click.echo(str(get_config_path()))


@config.command("show")
def show_config_cmd() -> None:
    """Show all configuration settings."""
    config_path = get_config_path()
    if not config_path.exists():
        click.echo(f"No config file: {config_path}")
        return

    click.echo(f"Config file: {config_path}\n")
    config_data = load_config()
    if not config_data:
        click.echo("Configuration is empty.")
        return

    click.echo("Settings:")
    for section in CONFIG_SECTIONS:
        values = config_data.get(section)
        if not isinstance(values, dict) or not values:
            continue
        click.echo(f"  [{section}]")
        for key, value in values.items():
            click.echo(f"    {key} = {json.dumps(value)}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def set_config_cmd(key: str, value: str) -> None:
    """Set a value, e.g. `gasp config set clustering.gap_sec 90`."""
    parsed = parse_config_value(value)
    try:
        set_config_value(key, parsed)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEY") from e
    click.echo(f"✓ {key} = {json.dumps(parsed)}")
    click.echo(f"  Config: {get_config_path()}")


@config.command("unset")
@click.argument("key")
def unset_config_cmd(key: str) -> None:
    """Remove a value, restoring its default."""
    try:
        removed = unset_config_value(key)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="KEY") from e
    if removed:
        click.echo(f"✓ Removed {key}")
    else:
        click.echo(f"{key} was not set.")


if __name__ == "__main__":
    cli()
