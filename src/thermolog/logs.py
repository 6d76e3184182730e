"""Loading and summarising temperature logs written by the meter."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd

DATE_COLUMN = "Date"
SENSOR_PREFIX = "Sensor"


def sensor_columns(df: pd.DataFrame) -> list[str]:
    return [col for col in df.columns if col.startswith(SENSOR_PREFIX)]


def load_log(path: str | Path) -> pd.DataFrame:
    """Load a temperature log from *path*.

    Parameters
    ----------
    path:
        CSV file with a `Date` column followed by `Sensor1` .. `SensorN`.

    Returns
    -------
    pandas.DataFrame
        Rows sorted by `Date` (parsed to datetimes) with float sensor columns.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    df = pd.read_csv(path)
    if DATE_COLUMN not in df.columns:
        raise ValueError(f"Missing required column: {DATE_COLUMN!r}")
    sensors = sensor_columns(df)
    if not sensors:
        raise ValueError("Log has no sensor columns")

    df = df.copy()
    df[DATE_COLUMN] = pd.to_datetime(df[DATE_COLUMN])
    df[sensors] = df[sensors].astype(float)
    df = df.sort_values(DATE_COLUMN, kind="mergesort")
    df.reset_index(drop=True, inplace=True)
    return df


def summarize_log(df: pd.DataFrame) -> pd.DataFrame:
    """Per-sensor count/min/max/mean, indexed by sensor column name."""

    sensors = sensor_columns(df)
    rows = []
    for name in sensors:
        values = df[name].to_numpy(dtype=float)
        rows.append(
            {
                "sensor": name,
                "count": int(values.size),
                "min": float(np.min(values)) if values.size else float("nan"),
                "max": float(np.max(values)) if values.size else float("nan"),
                "mean": float(np.mean(values)) if values.size else float("nan"),
            }
        )
    return pd.DataFrame(rows, columns=["sensor", "count", "min", "max", "mean"]).set_index("sensor")
