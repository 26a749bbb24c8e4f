"""
Command-line interface for relaymatch using Typer.
"""

from datetime import datetime
from pathlib import Path

import pandas as pd
import typer
from rich.console import Console
from rich.table import Table

from relaymatch import __version__
from relaymatch.config import ParamsStore, RelayMatchParams, load_relaymatch_params
from relaymatch.core_types import GeoPoint
from relaymatch.engine import MatchingEngine
from relaymatch.exceptions import FeedUnavailable, RelayMatchError
from relaymatch.forecasting import build_forecaster
from relaymatch.ingestion import LoadEventKind
from relaymatch.utils.data_processing import (
    load_crossovers,
    load_facilities,
    load_history,
    load_hubs,
    load_loads,
    load_vehicles,
    to_utc_datetime,
)
from relaymatch.utils.logging import (
    LogLevel,
    ProgressTracker,
    log_detail,
    log_error,
    log_info,
    log_progress,
    log_success,
    setup_logging,
)
from relaymatch.utils.save_results import save_run_results

app = typer.Typer(
    help="relaymatch: network matching and relay optimization for freight loads",
    add_completion=False,
)
console = Console()


def _load_params(config: Path | None) -> RelayMatchParams:
    if config is None:
        return RelayMatchParams()
    if not config.exists():
        log_error(f"Config file not found: {config}")
        raise typer.Exit(1)
    try:
        return load_relaymatch_params(config)
    except (ValueError, FileNotFoundError) as e:
        log_error(str(e))
        raise typer.Exit(1)


def _require(path: Path | None, what: str) -> None:
    if path is not None and not path.exists():
        log_error(f"{what} file not found: {path}")
        raise typer.Exit(1)


def _build_engine(
    vehicles: Path,
    loads: Path,
    hubs: Path | None,
    history: Path | None,
    params: RelayMatchParams,
    now: str | None,
) -> MatchingEngine:
    """Engine loaded from CSV files, with the clock pinned to ``now``.

    Without ``--now`` the clock is the most recent vehicle position timestamp,
    so historical extracts evaluate against their own point in time.
    """
    fleet = load_vehicles(vehicles)
    load_list = load_loads(loads)
    if now is not None:
        pinned: datetime = to_utc_datetime(now)
    elif fleet:
        pinned = max(v.timestamp for v in fleet)
    else:
        pinned = to_utc_datetime(pd.Timestamp.now(tz="UTC"))

    forecaster = build_forecaster(load_history(history), params.forecast) if history else None
    engine = MatchingEngine(ParamsStore(params), forecaster=forecaster, clock=lambda: pinned)
    if hubs is not None:
        engine.hub_selector.publish(load_hubs(hubs))
    for vehicle in fleet:
        engine.ingestor.ingest_vehicle_update(vehicle)
    for load in load_list:
        engine.ingestor.ingest_load_event(LoadEventKind.CREATED, load, timestamp=load.updated_at or pinned)
    log_info(f"Loaded {len(fleet)} vehicles and {len(load_list)} loads at {pinned.isoformat()}")
    return engine


@app.command()
def optimize(
    vehicles: Path = typer.Option(..., "--vehicles", help="Vehicle snapshot CSV"),
    loads: Path = typer.Option(..., "--loads", help="Open loads CSV"),
    hubs: Path | None = typer.Option(None, "--hubs", help="Smart Hub CSV"),
    history: Path | None = typer.Option(None, "--history", help="Demand history CSV"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    output: Path = typer.Option("results", "--output", "-o", help="Output directory"),
    format: str = typer.Option("json", "--format", "-f", help="Output format (json, csv)"),
    now: str | None = typer.Option(None, "--now", help="Evaluation time (ISO 8601)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output (errors only)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """
    Run one batch matching pass over the given fleet and loads.

    Holds are issued for the selected candidates and the run is written to
    the output directory.
    """
    _setup_logging_from_flags(verbose, quiet, debug)
    for path, what in ((vehicles, "Vehicles"), (loads, "Loads"), (hubs, "Hubs"), (history, "History")):
        _require(path, what)
    if format not in ["json", "csv"]:
        log_error("Invalid format. Choose 'json' or 'csv'")
        raise typer.Exit(1)
    params = _load_params(config)

    tracker = ProgressTracker(["Load feed", "Optimize", "Save results"])
    try:
        engine = _build_engine(vehicles, loads, hubs, history, params, now)
        tracker.advance("Feed loaded")
        log_progress("Running optimization...")
        run = engine.run_optimization()
        tracker.advance(f"Run {run.state.value.lower()} ({run.method or 'no solve'})")
    except (FeedUnavailable, RelayMatchError, ValueError, FileNotFoundError) as e:
        tracker.close()
        log_error(str(e))
        raise typer.Exit(1)

    for failure in run.failures:
        log_detail(f"{failure.load_id}: {failure.reason} {failure.error}".rstrip())

    table = Table(title="Optimization Run", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in run.summary().items():
        table.add_row(key.replace("_", " ").title(), str(value))
    console.print(table)

    if run.matches and not quiet:
        matches = Table(title="Held Matches", show_header=True)
        matches.add_column("Load", style="cyan")
        matches.add_column("Vehicles")
        matches.add_column("Score", style="green")
        matches.add_column("Held Until")
        for match in sorted(run.matches, key=lambda m: m.load_id):
            matches.add_row(
                match.load_id,
                ", ".join(match.vehicle_ids),
                f"{match.score:.1f}",
                match.held_until.isoformat() if match.held_until else "",
            )
        console.print(matches)

    filename = output / f"run_{run.run_id}.{format}"
    save_run_results(
        run,
        filename,
        format=format,
        time_recorder=engine.optimizer.time_recorder,
        plans=engine.committer.active_plans(),
    )
    tracker.advance("Results saved")
    tracker.close()
    log_success(f"Results saved to {filename}")


@app.command()
def candidates(
    vehicles: Path = typer.Option(..., "--vehicles", help="Vehicle snapshot CSV"),
    loads: Path = typer.Option(..., "--loads", help="Open loads CSV"),
    load_id: str = typer.Option(..., "--load-id", "-l", help="Load to generate candidates for"),
    hubs: Path | None = typer.Option(None, "--hubs", help="Smart Hub CSV"),
    top: int = typer.Option(5, "--top", "-n", help="Number of candidates to show"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    now: str | None = typer.Option(None, "--now", help="Evaluation time (ISO 8601)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output (errors only)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """
    Show the best scored direct and relay candidates for one load.
    """
    _setup_logging_from_flags(verbose, quiet, debug)
    for path, what in ((vehicles, "Vehicles"), (loads, "Loads"), (hubs, "Hubs")):
        _require(path, what)
    params = _load_params(config)

    try:
        engine = _build_engine(vehicles, loads, hubs, None, params, now)
        found = engine.top_candidates(load_id, top)
    except (RelayMatchError, ValueError, FileNotFoundError) as e:
        log_error(str(e))
        raise typer.Exit(1)

    table = Table(title=f"Candidates for {load_id}", show_header=True)
    table.add_column("Candidate", style="cyan")
    table.add_column("Kind")
    table.add_column("Score", style="green")
    table.add_column("Deadhead km")
    table.add_column("Detour km")
    table.add_column("Delivery")
    for candidate in found:
        table.add_row(
            candidate.candidate_id,
            candidate.kind.value,
            f"{candidate.score:.1f}",
            f"{candidate.total_deadhead_km:.0f}",
            f"{candidate.detour_km:.0f}",
            candidate.delivered_at.isoformat(),
        )
    console.print(table)


@app.command()
def hubs(
    crossovers: Path = typer.Option(..., "--crossovers", help="Route crossover points CSV"),
    facilities: Path = typer.Option(..., "--facilities", help="Candidate facilities CSV"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write selected hubs to this CSV"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output (errors only)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug output"),
) -> None:
    """
    Select Smart Hubs from historical crossover points and facility data.
    """
    _setup_logging_from_flags(verbose, quiet, debug)
    _require(crossovers, "Crossovers")
    _require(facilities, "Facilities")
    params = _load_params(config)

    try:
        engine = MatchingEngine(ParamsStore(params))
        selected = engine.refresh_hubs(load_crossovers(crossovers), load_facilities(facilities))
    except (RelayMatchError, ValueError, FileNotFoundError) as e:
        log_error(str(e))
        raise typer.Exit(1)

    ranked = sorted(selected, key=lambda h: (-h.composite_score, -h.suitability, h.hub_id))
    table = Table(title="Smart Hubs", show_header=True)
    table.add_column("Hub", style="cyan")
    table.add_column("Name")
    table.add_column("Crossovers")
    table.add_column("Suitability")
    table.add_column("Composite", style="green")
    for hub in ranked:
        table.add_row(
            hub.hub_id,
            hub.name,
            str(hub.crossover_frequency),
            f"{hub.suitability:.2f}",
            f"{hub.composite_score:.3f}",
        )
    console.print(table)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(
            [
                {
                    "hub_id": h.hub_id,
                    "latitude": h.location.latitude,
                    "longitude": h.location.longitude,
                    "capacity": h.capacity,
                    "suitability": h.suitability,
                    "active_from_hour": h.active_from_hour,
                    "active_to_hour": h.active_to_hour,
                    "name": h.name,
                }
                for h in ranked
            ]
        ).to_csv(output, index=False)
        log_success(f"Hubs saved to {output}")


@app.command()
def forecast(
    history: Path = typer.Option(..., "--history", help="Demand history CSV"),
    cell: str | None = typer.Option(None, "--cell", help="Grid cell id, e.g. r40_c-75"),
    latitude: float | None = typer.Option(None, "--lat", help="Latitude (instead of --cell)"),
    longitude: float | None = typer.Option(None, "--lon", help="Longitude (instead of --cell)"),
    at: str = typer.Option(..., "--at", help="Bucket start time (ISO 8601)"),
    buckets: int = typer.Option(1, "--buckets", "-b", help="Number of consecutive buckets"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to configuration YAML file"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Minimal output (errors only)"),
) -> None:
    """
    Forecast expected loads and trucks for a region cell.
    """
    _setup_logging_from_flags(quiet=quiet)
    _require(history, "History")
    params = _load_params(config)
    if cell is None and (latitude is None or longitude is None):
        log_error("Pass --cell or both --lat and --lon")
        raise typer.Exit(1)

    try:
        forecaster = build_forecaster(load_history(history), params.forecast)
        start = to_utc_datetime(at)
        if cell is None:
            cell = forecaster.forecast_at(GeoPoint(latitude, longitude), start).cell_id
        results = forecaster.horizon(cell, start, buckets)
    except (ValueError, FileNotFoundError) as e:
        log_error(str(e))
        raise typer.Exit(1)

    table = Table(title=f"Demand forecast for {cell}", show_header=True)
    table.add_column("Bucket", style="cyan")
    table.add_column("Loads")
    table.add_column("Trucks")
    table.add_column("Balance", style="green")
    table.add_column("Confidence")
    for f in results:
        table.add_row(
            f.bucket_start.isoformat(),
            f"{f.expected_loads:.1f} [{f.loads_interval[0]:.1f}, {f.loads_interval[1]:.1f}]",
            f"{f.expected_trucks:.1f} [{f.trucks_interval[0]:.1f}, {f.trucks_interval[1]:.1f}]",
            f"{f.balance:+.1f}",
            f"{f.confidence:.2f}",
        )
    console.print(table)


@app.command()
def version() -> None:
    """
    Show the relaymatch version.
    """
    console.print(f"relaymatch version {__version__}")


def _setup_logging_from_flags(
    verbose: bool = False, quiet: bool = False, debug: bool = False
):
    """Setup logging based on CLI flags or environment variable."""
    level_from_flags: LogLevel | None = None
    if debug:
        level_from_flags = LogLevel.DEBUG
    elif verbose:
        level_from_flags = LogLevel.VERBOSE
    elif quiet:
        level_from_flags = LogLevel.QUIET

    if level_from_flags is not None:
        setup_logging(level_from_flags)
    else:
        # No flags set, let setup_logging handle it (will check env var)
        setup_logging()


if __name__ == "__main__":
    app()
