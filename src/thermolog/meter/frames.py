from __future__ import annotations

import enum
from dataclasses import dataclass

FRAME_LENGTH = 16
SENSOR_COUNT = 4
# Bytes 0-13 carry the reading; anything after that is trailer.
PAYLOAD_LENGTH = 14

_DIGITS = frozenset(b"0123456789")
_DISPLAYS = frozenset(b"1234")
_DECIMALS = frozenset(b"0123")


class TemperatureUnit(str, enum.Enum):
    CELSIUS = "1"
    FAHRENHEIT = "2"


class FrameError(ValueError):
    """Base class for frames that could not be turned into a reading."""

    def __init__(self, message: str, frame: bytes):
        super().__init__(message)
        self.frame = bytes(frame)


class FormatMismatch(FrameError):
    """The block does not have the shape of a frame: the stream is misaligned."""


class FieldValueError(FrameError):
    """The block is shaped like a frame but one field holds an unusable value."""


@dataclass(frozen=True)
class Reading:
    sensor_index: int
    value: float
    unit: TemperatureUnit = TemperatureUnit.CELSIUS
    decimals: int = 1


def decode_frame(
    block: bytes,
    sensor_count: int = SENSOR_COUNT,
    frame_length: int = FRAME_LENGTH,
) -> Reading:
    """
    Decode one fixed-width frame into a :class:`Reading`.

    Layout (ASCII digits): ``4 <display> 0 <unit> <sign> <decimals> <8-digit magnitude>``
    followed by trailer bytes up to ``frame_length``. The magnitude is divided by
    ``10**decimals`` and negated when the sign digit is ``1``.

    Raises :class:`FormatMismatch` when the block does not follow the layout and
    :class:`FieldValueError` when it does but a field value cannot be used.
    """
    block = bytes(block)
    if len(block) != frame_length or frame_length < PAYLOAD_LENGTH:
        raise FormatMismatch(
            f"Expected {frame_length} bytes but got {len(block)}", block
        )
    payload = block[:PAYLOAD_LENGTH]
    if payload[0] != ord("4") or payload[2] != ord("0"):
        raise FormatMismatch("Invalid frame data", block)
    if not all(byte in _DIGITS for byte in payload):
        raise FormatMismatch("Non-digit byte in frame", block)
    if payload[1] not in _DISPLAYS or payload[5] not in _DECIMALS:
        raise FormatMismatch("Invalid frame data", block)
    try:
        unit = TemperatureUnit(chr(payload[3]))
    except ValueError as exc:
        raise FormatMismatch("Invalid unit code", block) from exc

    sign = chr(payload[4])
    if sign not in ("0", "1"):
        raise FieldValueError(
            f"Invalid sign byte. Expected 0 or 1 but got '{sign}'", block
        )
    sensor_index = payload[1] - ord("1")
    if sensor_index >= sensor_count:
        raise FieldValueError(
            f"Display {sensor_index + 1} is outside the {sensor_count} configured sensors",
            block,
        )

    decimals = payload[5] - ord("0")
    value = int(payload[6:PAYLOAD_LENGTH]) / 10**decimals
    if sign == "1":
        value = -value
    return Reading(sensor_index=sensor_index, value=value, unit=unit, decimals=decimals)


def encode_frame(reading: Reading, frame_length: int = FRAME_LENGTH) -> bytes:
    """Inverse of :func:`decode_frame`, used to synthesise device output."""
    if not 0 <= reading.sensor_index < SENSOR_COUNT:
        raise ValueError(f"sensor_index {reading.sensor_index} out of range")
    if not 0 <= reading.decimals <= 3:
        raise ValueError(f"decimals must be 0..3, got {reading.decimals}")
    if frame_length < PAYLOAD_LENGTH:
        raise ValueError(f"frame_length must be at least {PAYLOAD_LENGTH}")
    magnitude = round(abs(reading.value) * 10**reading.decimals)
    if magnitude > 99_999_999:
        raise ValueError(f"value {reading.value} does not fit in 8 digits")
    sign = "1" if reading.value < 0 else "0"
    text = (
        f"4{reading.sensor_index + 1}0{TemperatureUnit(reading.unit).value}"
        f"{sign}{reading.decimals}{magnitude:08d}"
    )
    trailer = (b"\r\n" * frame_length)[: frame_length - PAYLOAD_LENGTH]
    return text.encode("ascii") + trailer
