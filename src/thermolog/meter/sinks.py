from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, TextIO

import typer

from .entries import TIMESTAMP_FORMAT, Entry

EntrySink = Callable[[Entry], None]


def csv_header(sensor_count: int) -> List[str]:
    return ["Date"] + [f"Sensor{i + 1}" for i in range(sensor_count)]


class CsvLogger:
    """
    Append entries to a CSV file, one row per entry.

    The file is opened lazily on the first entry so dry runs never touch the
    filesystem. A header is written only when the file is new or empty; an
    existing log is appended to as-is.
    """

    def __init__(self, path: Path, precision: int = 3):
        self.path = Path(path)
        self.precision = precision
        self._writer: Optional[Any] = None
        self._file_handle: Optional[TextIO] = None
        self._log = logging.getLogger(__name__)

    def append(self, entry: Entry) -> None:
        if self._writer is None:
            self._open(entry.sensor_count)
        assert self._writer is not None and self._file_handle is not None
        values = [f"{value:.{self.precision}f}" for value in entry.values()]
        self._writer.writerow([entry.timestamp.strftime(TIMESTAMP_FORMAT), *values])
        self._file_handle.flush()

    __call__ = append

    def _open(self, sensor_count: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        created = not self.path.exists() or self.path.stat().st_size == 0
        self._file_handle = self.path.open("a", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file_handle)
        if created:
            self._writer.writerow(csv_header(sensor_count))
            self._log.info("Created temperature log %s", self.path)
        else:
            self._log.info("Appending to temperature log %s", self.path)

    def close(self) -> None:
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None
            self._writer = None


def console_sink(entry: Entry) -> None:
    typer.echo(str(entry))
