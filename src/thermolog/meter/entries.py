from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

import numpy as np

from .frames import SENSOR_COUNT, Reading

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(eq=False)
class Entry:
    """
    One reading per sensor sharing a single timestamp.

    Slots start at 0.0 and are overwritten as readings arrive; the entry is
    complete once every slot has been written at least once.
    """

    timestamp: datetime
    sensor_count: int = SENSOR_COUNT
    sensors: np.ndarray = field(init=False)
    _written: np.ndarray = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.sensor_count < 1:
            raise ValueError("sensor_count must be positive")
        self.sensors = np.zeros(self.sensor_count, dtype=float)
        self._written = np.zeros(self.sensor_count, dtype=bool)

    def apply(self, reading: Reading) -> bool:
        index = reading.sensor_index
        if not 0 <= index < self.sensor_count:
            raise ValueError(f"Sensor index {index} outside entry of {self.sensor_count} sensors")
        self.sensors[index] = reading.value
        self._written[index] = True
        return self.is_complete

    @property
    def is_complete(self) -> bool:
        return bool(self._written.all())

    def values(self) -> List[float]:
        return [float(value) for value in self.sensors]

    def __str__(self) -> str:
        sensors = "   ".join(f"S{i + 1}: {value:.1f}" for i, value in enumerate(self.values()))
        return f"{self.timestamp.strftime(TIMESTAMP_FORMAT)} -- {sensors}"
