"""Plotting helpers for recorded temperature logs."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd

from .logs import DATE_COLUMN, sensor_columns


def plot_log(df: pd.DataFrame, out_path: Path) -> Path:
    plt = _require_matplotlib()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig, ax = plt.subplots(figsize=(10, 5))
    for name in sensor_columns(df):
        ax.plot(df[DATE_COLUMN], df[name], label=name)
    ax.set_xlabel("Time")
    ax.set_ylabel("Temperature")
    ax.grid(True, alpha=0.3)
    ax.legend(loc="upper left")
    fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _require_matplotlib() -> Any:
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting (pip install .[plot])") from exc
    return plt
