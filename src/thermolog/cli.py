"""Command line interface for working with recorded temperature logs."""
from __future__ import annotations

from pathlib import Path

import typer

from .logs import load_log, summarize_log
from .plotting import plot_log

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


def _load(input_path: Path):
    try:
        return load_log(input_path)
    except (FileNotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc), param_hint="--in") from exc


@app.command()
def summary(
    input_path: Path = typer.Option(..., "--in", help="Temperature log CSV."),
) -> None:
    """Print per-sensor statistics for a log."""

    df = _load(input_path)
    table = summarize_log(df)
    typer.echo(f"{len(df)} entries from {df['Date'].min()} to {df['Date'].max()}")
    typer.echo(table.to_string(float_format=lambda value: f"{value:.2f}"))


@app.command()
def plot(
    input_path: Path = typer.Option(..., "--in", help="Temperature log CSV."),
    out_path: Path = typer.Option(Path("temperature-log.png"), "--out", help="Output PNG."),
) -> None:
    """Render a log as a time series chart."""

    df = _load(input_path)
    try:
        figure = plot_log(df, out_path)
    except RuntimeError as exc:
        typer.echo(f"[warning] plotting skipped: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Chart written to {figure}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
