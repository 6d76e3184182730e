from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

import matplotlib.pyplot as plt
from matplotlib.animation import FuncAnimation

from .entries import Entry


class LivePlotter:
    """Realtime chart with one temperature line per sensor."""

    def __init__(
        self,
        *,
        sensor_count: int = 4,
        window: int = 500,
        refresh_ms: int = 500,
    ) -> None:
        self._logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._t0: Optional[datetime] = None
        self._time: Deque[float] = deque(maxlen=window)
        self._values: List[Deque[float]] = [deque(maxlen=window) for _ in range(sensor_count)]
        self._running = True

        self.fig, self.ax = plt.subplots(figsize=(10, 5))
        self.ax.set_title("Temperature")
        self.ax.set_xlabel("Time (s)")
        self.ax.set_ylabel("Temperature")
        self.lines = [
            self.ax.plot([], [], label=f"Sensor{i + 1}")[0] for i in range(sensor_count)
        ]
        self.ax.legend(loc="upper left")

        self._anim = FuncAnimation(self.fig, self._update_plot, interval=refresh_ms, blit=False)

        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def _loop(self) -> None:  # pragma: no cover - GUI loop
        plt.show(block=False)
        while self._running:
            try:
                plt.pause(0.1)
            except Exception:
                break

    def on_entry(self, entry: Entry) -> None:
        with self._lock:
            if self._t0 is None:
                self._t0 = entry.timestamp
            self._time.append((entry.timestamp - self._t0).total_seconds())
            for series, value in zip(self._values, entry.values()):
                series.append(value)

    def snapshot(self) -> tuple[List[float], List[List[float]]]:
        with self._lock:
            return list(self._time), [list(series) for series in self._values]

    def _update_plot(self, _frame):  # pragma: no cover - GUI callback
        times, values = self.snapshot()
        if not times:
            return self.lines
        xmin = times[0]
        xmax = times[-1] if times[-1] > xmin else xmin + 1.0
        for line, data in zip(self.lines, values):
            line.set_data(times, data)
        self.ax.set_xlim(xmin, xmax)
        self.ax.relim()
        self.ax.autoscale_view(scalex=False)
        return self.lines

    def close(self) -> None:
        self._running = False
        try:
            plt.close(self.fig)
        except Exception:
            self._logger.debug("Failed to close live plot", exc_info=True)
        thread = getattr(self, "_thread", None)
        if thread and thread.is_alive():
            thread.join(timeout=1.0)
