"""Typer CLI entry point for resilient-insights."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Any

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from resilient_insights import __version__
from resilient_insights.adapters import (
    CollectingAlertSink,
    InMemoryFailureDetectionStore,
    InMemoryMetricsStore,
)
from resilient_insights.config import Settings, format_validation_error
from resilient_insights.enums import FallbackTrigger, Sentiment
from resilient_insights.fallback.integration import FallbackIntegrator
from resilient_insights.fallback.patterns import (
    generate_pattern_recommendations,
    perform_advanced_pattern_analysis,
)
from resilient_insights.logging import configure_logging
from resilient_insights.monitoring.failure_detector import FailureDetector
from resilient_insights.monitoring.models import DetectionRun

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="resilient-insights",
    help="Resilience layer for AI sentiment analysis: fallback, retries, failure detection.",
    no_args_is_help=True,
)

_SENTIMENT_STYLE = {
    Sentiment.POSITIVE: "[green]positive[/green]",
    Sentiment.NEGATIVE: "[red]negative[/red]",
    Sentiment.NEUTRAL: "[yellow]neutral[/yellow]",
}
_SEVERITY_STYLE = {
    "critical": "bold red",
    "high": "red",
    "medium": "yellow",
    "low": "dim",
}

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config YAML file."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose logging."),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(config_path: Path | None = None, **overrides: Any) -> Settings:
    """Load settings with error handling and user-friendly messages."""
    try:
        return Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc


def _setup(config_path: Path | None, verbose: bool) -> Settings:
    overrides: dict[str, Any] = {}
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}
    settings = _load_settings(config_path, **overrides)
    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
        service_name=settings.circuit_breaker.service_name,
    )
    return settings


def _parse_now(raw: str | None) -> datetime:
    if raw is None:
        return datetime.now(tz=UTC)
    try:
        moment = datetime.fromisoformat(raw)
    except ValueError as exc:
        err_console.print(f"[red]Invalid --now timestamp:[/red] {raw}")
        raise typer.Exit(code=1) from exc
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def _display_detection_run(run: DetectionRun) -> None:
    if not run.detections:
        console.print("[green]No new failure patterns detected.[/green]")
    else:
        table = Table(title="Detected Failure Patterns", show_lines=True)
        table.add_column("Pattern", style="cyan")
        table.add_column("Severity", justify="center")
        table.add_column("Confidence", justify="right")
        table.add_column("Services")
        table.add_column("Primary Cause")
        for detection in run.detections:
            style = _SEVERITY_STYLE[detection.severity.value]
            table.add_row(
                detection.pattern.value,
                f"[{style}]{detection.severity.value}[/{style}]",
                f"{detection.confidence:.0%}",
                ", ".join(detection.affected_services),
                detection.root_cause_analysis.primary_cause,
            )
        console.print(table)
        for detection in run.detections:
            for rec in detection.recommendations:
                console.print(
                    f"[dim]{detection.pattern.value}[/dim] "
                    f"[bold]{rec.priority}[/bold]: {rec.action}"
                )

    if run.suppressed:
        console.print(f"[dim]{run.suppressed} duplicate detection(s) suppressed.[/dim]")
    if run.failed_detectors:
        failed = ", ".join(p.value for p in run.failed_detectors)
        err_console.print(f"[yellow]Detectors failed:[/yellow] {failed}")


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]resilient-insights[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """resilient-insights global options."""
    # Quiet until a command has loaded its settings; stdout stays machine-readable.
    configure_logging(level="WARNING")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def analyze(
    text: Annotated[str, typer.Argument(help="Entry text to analyze.")],
    context: Annotated[
        str | None,
        typer.Option("--context", help="Relationship context mentioned in reasoning."),
    ] = None,
    as_json: Annotated[
        bool, typer.Option("--json", help="Print the full result as JSON.")
    ] = False,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run the rule-based fallback analysis on TEXT."""
    settings = _setup(config, verbose)
    result = FallbackIntegrator(settings.fallback).execute(
        text, FallbackTrigger.MANUAL_REQUEST, relationship_context=context
    )
    if as_json:
        console.print_json(result.model_dump_json())
        return

    sentiment = result.sentiment
    table = Table(title="Fallback Analysis", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Sentiment", _SENTIMENT_STYLE[sentiment.sentiment])
    table.add_row("Confidence", f"{sentiment.confidence_score:.0%}")
    table.add_row("Mood", sentiment.mood_suggestion or "-")
    table.add_row("Method", sentiment.method)
    table.add_row("Quality", f"{result.quality.quality_score:.2f}")
    table.add_row("Combined confidence", f"{result.combined_confidence:.0%}")
    table.add_row("Would store", "yes" if result.should_store else "no")
    table.add_row("Keywords", ", ".join(sentiment.metadata.keywords_matched) or "-")
    table.add_row("Rules", ", ".join(sentiment.metadata.rules_fired) or "-")
    console.print(table)

    for insight in [*sentiment.insights, *result.patterns.relationship_insights]:
        console.print(f"  - {insight}")
    for issue in result.quality.issues:
        console.print(f"[yellow]Quality issue:[/yellow] {issue}")


@app.command()
def patterns(
    text: Annotated[str, typer.Argument(help="Entry text to analyze.")],
    previous: Annotated[
        list[str] | None,
        typer.Option("--previous", "-p", help="Earlier entry text (repeatable)."),
    ] = None,
) -> None:
    """Show relationship patterns, trends and recommendations for TEXT."""
    analysis = perform_advanced_pattern_analysis(text, previous)
    recommendations = generate_pattern_recommendations(analysis)

    table = Table(title="Relationship Patterns")
    table.add_column("Pattern", style="cyan")
    table.add_column("Category")
    table.add_column("Sentiment", justify="center")
    table.add_column("Confidence", justify="right")
    for match in analysis.matches:
        table.add_row(
            match.name,
            match.category,
            _SENTIMENT_STYLE[match.sentiment],
            f"{match.confidence:.0%}",
        )
    console.print(table)
    console.print(
        f"Overall: {_SENTIMENT_STYLE[analysis.overall_sentiment]}  "
        f"dominant category: [bold]{analysis.dominant_category or '-'}[/bold]  "
        f"confidence: {analysis.confidence_score:.0%}"
    )
    if analysis.trend_analysis is not None:
        trend = analysis.trend_analysis
        console.print(
            f"[green]Improving:[/green] {', '.join(trend.improving) or '-'}  "
            f"[red]Declining:[/red] {', '.join(trend.declining) or '-'}"
        )
    for insight in [*analysis.relationship_insights, *analysis.contextual_insights]:
        console.print(f"  - {insight}")
    for item in recommendations.actionable_insights:
        console.print(f"[bold]Next step:[/bold] {item}")


@app.command()
def detect(
    metrics_json: Annotated[
        Path,
        typer.Argument(
            help=(
                "JSON file with error_metrics, health_checks, latency_samples and "
                "circuit_breaker_events arrays."
            )
        ),
    ],
    now: Annotated[
        str | None,
        typer.Option("--now", help="Evaluate as of this ISO-8601 time (default: now)."),
    ] = None,
    config: ConfigOption = None,
    verbose: VerboseOption = False,
) -> None:
    """Run the failure-pattern detectors over a metrics snapshot file."""
    settings = _setup(config, verbose)
    if not metrics_json.is_file():
        err_console.print(f"[red]Metrics file not found:[/red] {metrics_json}")
        raise typer.Exit(code=1)
    try:
        data = json.loads(metrics_json.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        err_console.print(f"[red]Invalid JSON in {metrics_json}:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    if not isinstance(data, dict):
        err_console.print("[red]Metrics file must contain a JSON object.[/red]")
        raise typer.Exit(code=1)

    moment = _parse_now(now)
    sink = CollectingAlertSink()
    detector = FailureDetector(
        InMemoryMetricsStore.from_dict(data),
        InMemoryFailureDetectionStore(),
        alert_sink=sink,
        settings=settings.failure_detection,
        clock=lambda: moment,
    )
    run = asyncio.run(detector.run())
    _display_detection_run(run)
    if run.failed_detectors:
        raise typer.Exit(code=2)


@app.command(name="config-show")
def config_show(config: ConfigOption = None) -> None:
    """Print the fully-resolved configuration."""
    settings = _setup(config, verbose=False)
    console.print_json(settings.model_dump_json())


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(f"[bold]resilient-insights[/bold] {__version__}")
