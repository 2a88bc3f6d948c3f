"""CLI commands for running the insights pipelines on exported data.

The commands read plain JSON arrays exported by the caller's data layer, run one
pipeline, and print the result as a rich table (or JSON with ``--json``).

Commands Overview:
- decompose: trend/seasonal/residual split of a monthly series
- forecast: train the lag-window forecaster and predict the next value(s)
- anomalies: train the autoencoder on multivariate records and flag outliers

Usage Examples:
    python -m society_insights.cli.insights decompose expenses.json
    python -m society_insights.cli.insights forecast expenses.json --horizon 3
    python -m society_insights.cli.insights anomalies records.json --epochs 100
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any

import torch
import typer
from rich.console import Console
from rich.table import Table

from society_insights.config.settings import settings
from society_insights.ml.exceptions import InsightsError, InvalidInputError
from society_insights.ml.features.feature_builder import MinMaxScaling
from society_insights.ml.models.base import TrainingConfig
from society_insights.ml.orchestrator import InsightsConfig, InsightsOrchestrator

app = typer.Typer(help="On-device analytics for society finance records")
console = Console()

logger = logging.getLogger(__name__)


def setup_logging(level: str | None = None) -> None:
    """Configure logging for CLI runs.

    Logs go to stdout and, when ``settings.log_file`` is set, to that file as well.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log per-epoch training loss"),
) -> None:
    """Configure logging and CPU threads before any command runs."""
    setup_logging("DEBUG" if verbose else None)
    torch.set_num_threads(settings.num_cpu_threads)


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except FileNotFoundError:
        console.print(f"❌ File not found: {path}", style="red")
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        console.print(f"❌ {path} is not valid JSON: {e}", style="red")
        raise typer.Exit(1) from e


def _training_config(
    base: TrainingConfig,
    epochs: int | None,
    learning_rate: float | None,
    validation_split: float | None,
) -> TrainingConfig:
    try:
        return TrainingConfig(
            epochs=epochs if epochs is not None else base.epochs,
            learning_rate=learning_rate if learning_rate is not None else base.learning_rate,
            validation_split=(
                validation_split if validation_split is not None else base.validation_split
            ),
            batch_size=base.batch_size,
            seed=base.seed,
        )
    except InvalidInputError as e:
        console.print(f"❌ Invalid training option: {e}", style="red")
        raise typer.Exit(1) from e


def _fail(e: InsightsError) -> None:
    console.print(f"❌ {e}", style="red")
    raise typer.Exit(1) from e


@app.command()
def decompose(
    path: Path = typer.Argument(..., help="JSON array of observations, oldest first"),
    period: int = typer.Option(12, help="Seasonal period length"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """Split a series into trend, seasonal and residual components."""
    series = _load_json(path)
    config = InsightsConfig.from_settings(settings)

    with InsightsOrchestrator(config) as insights:
        try:
            decomposition = insights.decompose(series, period)
        except InsightsError as e:
            _fail(e)

    if as_json:
        console.print_json(json.dumps(decomposition.to_dict()))
        return

    table = Table(title=f"Decomposition (period {period})")
    for column in ("Index", "Value", "Trend", "Seasonal", "Residual"):
        table.add_column(column, justify="right")
    for i, value in enumerate(series):
        table.add_row(
            str(i),
            f"{value:,.2f}",
            f"{decomposition.trend[i]:,.2f}",
            f"{decomposition.seasonal[i]:,.2f}",
            f"{decomposition.residual[i]:,.2f}",
        )
    console.print(table)


@app.command()
def forecast(
    path: Path = typer.Argument(..., help="JSON array of monthly observations, oldest first"),
    horizon: int = typer.Option(1, help="Number of future periods to predict"),
    epochs: int | None = typer.Option(None, help="Training epochs"),
    learning_rate: float | None = typer.Option(None, help="Adam learning rate"),
    validation_split: float | None = typer.Option(None, help="Fraction of rows held out"),
    save: str | None = typer.Option(
        None, help="Save the trained forecaster; relative names resolve under the model directory"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """Train the forecaster on a series and predict the next value(s)."""
    series = _load_json(path)
    config = InsightsConfig.from_settings(settings)
    training = _training_config(config.forecast_training, epochs, learning_rate, validation_split)

    with InsightsOrchestrator(config) as insights:
        try:
            result = insights.generate_forecast(series, training, horizon=horizon)
        except InsightsError as e:
            _fail(e)
        if save:
            location = settings.model_dir / save
            location.parent.mkdir(parents=True, exist_ok=True)
            insights.forecaster.save(str(location))
            console.print(f"💾 Forecaster saved to {location}")

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
        return

    table = Table(title="Forecast")
    table.add_column("Step", justify="right")
    table.add_column("Prediction", justify="right")
    for step, value in enumerate(result.predictions, start=1):
        table.add_row(f"+{step}", f"{value:,.2f}")
    console.print(table)

    console.print(f"📈 Trend: {result.trend_direction}")
    console.print(f"🎯 Confidence: {result.confidence:.2f}")
    console.print(f"📉 Final metrics: {result.metrics}")


@app.command()
def anomalies(
    path: Path = typer.Argument(..., help="JSON array of records (arrays of numbers)"),
    scale: bool = typer.Option(True, help="Min-max scale records to [0, 1] first"),
    epochs: int | None = typer.Option(None, help="Training epochs"),
    learning_rate: float | None = typer.Option(None, help="Adam learning rate"),
    validation_split: float | None = typer.Option(None, help="Fraction of rows held out"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON instead of a table"),
) -> None:
    """Train the autoencoder on records and flag anomalous ones."""
    records = _load_json(path)
    config = InsightsConfig.from_settings(settings)
    training = _training_config(config.anomaly_training, epochs, learning_rate, validation_split)

    if scale:
        try:
            records = MinMaxScaling().fit_transform(records)
        except InvalidInputError as e:
            console.print(f"❌ Cannot scale records: {e}", style="red")
            raise typer.Exit(1) from e

    with InsightsOrchestrator(config) as insights:
        try:
            report = insights.generate_anomaly_report(records, training)
        except InsightsError as e:
            _fail(e)

    if as_json:
        console.print_json(json.dumps(report.to_dict()))
        return

    table = Table(title=f"Anomalies (threshold {report.threshold:.6f})")
    table.add_column("Record", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Anomaly", justify="center")
    for i, (score, flagged) in enumerate(zip(report.scores, report.anomalies)):
        table.add_row(str(i), f"{score:.6f}", "⚠️" if flagged else "")
    console.print(table)
    console.print(f"🔍 {report.anomaly_count} of {len(report.scores)} records flagged")


if __name__ == "__main__":
    app()
