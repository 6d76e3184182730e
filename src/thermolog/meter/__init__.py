"""
Acquisition side of thermolog: decode the thermometer's serial stream.

The subpackage exposes the frame codec, the entry accumulator, configuration
models and the stream reader that ties them to a serial port and CSV log.
"""

from .config import MeterConfig, SerialConfig, load_config
from .entries import Entry
from .frames import (
    FRAME_LENGTH,
    SENSOR_COUNT,
    FieldValueError,
    FormatMismatch,
    FrameError,
    Reading,
    TemperatureUnit,
    decode_frame,
    encode_frame,
)
from .runner import SerialSettings, StreamByteSource, StreamReader
from .sinks import CsvLogger

__all__ = [
    "FRAME_LENGTH",
    "SENSOR_COUNT",
    "MeterConfig",
    "SerialConfig",
    "load_config",
    "Entry",
    "FieldValueError",
    "FormatMismatch",
    "FrameError",
    "Reading",
    "TemperatureUnit",
    "decode_frame",
    "encode_frame",
    "SerialSettings",
    "StreamByteSource",
    "StreamReader",
    "CsvLogger",
]
