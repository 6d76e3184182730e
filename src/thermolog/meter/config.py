from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Sequence

from .frames import FRAME_LENGTH, PAYLOAD_LENGTH, SENSOR_COUNT


@dataclass
class SerialConfig:
    baudrate: int = 9600
    timeout: float = 1.0


@dataclass
class MeterConfig:
    frame_length: int = FRAME_LENGTH
    sensor_count: int = SENSOR_COUNT
    poll_interval_sec: float = 0.01
    # Lets the device buffer more bytes before a byte is dropped to realign.
    settle_delay_sec: float = 0.1
    pacing_delay_sec: float = 0.01
    output_csv: Path | None = Path("temperature-log.csv")
    csv_precision: int = 3
    serial: SerialConfig = field(default_factory=SerialConfig)

    def validate(self) -> "MeterConfig":
        if self.frame_length < PAYLOAD_LENGTH:
            raise ValueError(f"frame_length must be at least {PAYLOAD_LENGTH}, got {self.frame_length}")
        if not 1 <= self.sensor_count <= SENSOR_COUNT:
            raise ValueError(f"sensor_count must be between 1 and {SENSOR_COUNT}, got {self.sensor_count}")
        for name in ("poll_interval_sec", "settle_delay_sec", "pacing_delay_sec"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} may not be negative")
        if self.csv_precision < 0:
            raise ValueError("csv_precision may not be negative")
        return self


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> MeterConfig:
    """
    Build a :class:`MeterConfig` from an optional JSON file plus CLI overrides.

    Overrides are dotted `key=value` pairs applied on top of the file, e.g.:
        ["settle_delay_sec=0.2", "serial.baudrate=19200", "output_csv="]
    An empty `output_csv` disables CSV persistence.
    """
    data = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    serial_data = merged.get("serial") or {}
    if not isinstance(serial_data, dict):
        raise ValueError(f"serial must be a mapping, got {serial_data!r}")
    output_csv = merged.get("output_csv", "temperature-log.csv")
    try:
        config = _build(merged, serial_data, output_csv)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid configuration value: {exc}") from exc
    return config.validate()


def _build(merged: Dict[str, Any], serial_data: Dict[str, Any], output_csv: Any) -> MeterConfig:
    return MeterConfig(
        frame_length=int(merged.get("frame_length", FRAME_LENGTH)),
        sensor_count=int(merged.get("sensor_count", SENSOR_COUNT)),
        poll_interval_sec=float(merged.get("poll_interval_sec", 0.01)),
        settle_delay_sec=float(merged.get("settle_delay_sec", 0.1)),
        pacing_delay_sec=float(merged.get("pacing_delay_sec", 0.01)),
        output_csv=Path(str(output_csv)) if output_csv else None,
        csv_precision=int(merged.get("csv_precision", 3)),
        serial=SerialConfig(
            baudrate=int(serial_data.get("baudrate", 9600)),
            timeout=float(serial_data.get("timeout", 1.0)),
        ),
    )


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    return key, _coerce_value(raw_value.strip())


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
        if not isinstance(cursor, dict):
            raise ValueError(f"Override '{dotted_key}' conflicts with a scalar value for '{part}'")
    cursor[parts[-1]] = value
