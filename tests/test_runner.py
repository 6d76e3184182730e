from __future__ import annotations

import io
import logging
from datetime import datetime, timedelta
from itertools import count
from pathlib import Path

import numpy as np
import pytest
import serial
from typer.testing import CliRunner

from thermolog.meter.config import MeterConfig
from thermolog.meter.entries import Entry
from thermolog.meter.frames import Reading, encode_frame
from thermolog.meter.runner import StreamByteSource, StreamReader, app, first_port

CYCLE_A = [21.5, 22.0, -3.1, 100.25]
CYCLE_B = [21.6, 22.1, -3.0, 99.75]


class FakeSerial:
    """Hands out one chunk per `in_waiting` poll and closes once drained."""

    def __init__(self, chunks: list[bytes], fail_when_drained: bool = False):
        self._pending = [bytes(chunk) for chunk in chunks]
        self._buffer = bytearray()
        self._fail_when_drained = fail_when_drained
        self.closed = False

    @property
    def in_waiting(self) -> int:
        if self._pending:
            self._buffer.extend(self._pending.pop(0))
        elif self._fail_when_drained and not self._buffer:
            raise serial.SerialException("device reports readiness but returned no data")
        return len(self._buffer)

    @property
    def is_open(self) -> bool:
        return bool(self._pending) or self._fail_when_drained

    def read(self, size: int = 1) -> bytes:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def close(self) -> None:
        self.closed = True


def cycle(values: list[float], sensors=None) -> bytes:
    order = sensors if sensors is not None else range(len(values))
    return b"".join(encode_frame(Reading(sensor_index=i, value=values[i], decimals=2)) for i in order)


def fast_config(**kwargs) -> MeterConfig:
    options = dict(poll_interval_sec=0.0, settle_delay_sec=0.0, pacing_delay_sec=0.0, output_csv=None)
    options.update(kwargs)
    return MeterConfig(**options)


def ticking_clock():
    ticks = count()
    start = datetime(2026, 10, 18, 12, 0, 0)
    return lambda: start + timedelta(seconds=next(ticks))


def run_reader(source, config: MeterConfig | None = None) -> tuple[StreamReader, list[Entry]]:
    emitted: list[Entry] = []
    reader = StreamReader(source, config or fast_config(), sinks=[emitted.append], clock=ticking_clock())
    reader.run()
    return reader, emitted


def test_first_completed_entry_is_discarded() -> None:
    source = FakeSerial([cycle(CYCLE_A), cycle(CYCLE_B)])
    reader, emitted = run_reader(source)
    assert len(emitted) == 1
    assert np.allclose(emitted[0].sensors, CYCLE_B)
    stats = reader.stats()
    assert stats["frames"] == 8
    assert stats["entries"] == 1
    assert stats["discarded_entries"] == 1


def test_every_entry_after_the_first_is_emitted() -> None:
    source = FakeSerial([cycle(CYCLE_A), cycle(CYCLE_B), cycle(CYCLE_A)])
    _, emitted = run_reader(source)
    assert [entry.values() for entry in emitted] == [CYCLE_B, CYCLE_A]
    assert emitted[0].timestamp < emitted[1].timestamp


def test_recovers_from_leading_junk() -> None:
    stream = b"xyz" + cycle(CYCLE_A) + cycle(CYCLE_B)
    reader, emitted = run_reader(FakeSerial([stream]))
    stats = reader.stats()
    assert 0 < stats["format_mismatches"] <= 16
    assert stats["format_mismatches"] == 3
    assert stats["frames"] == 8
    assert len(emitted) == 1
    assert np.allclose(emitted[0].sensors, CYCLE_B)


def test_recovers_from_partial_reads() -> None:
    stream = b"\r\n" + cycle(CYCLE_A) + cycle(CYCLE_B)
    chunks = [stream[i : i + 5] for i in range(0, len(stream), 5)]
    reader, emitted = run_reader(FakeSerial(chunks))
    assert reader.stats()["format_mismatches"] == 2
    assert reader.stats()["frames"] == 8
    assert np.allclose(emitted[0].sensors, CYCLE_B)


def test_corrupt_frame_is_dropped_without_resync() -> None:
    corrupt = bytearray(encode_frame(Reading(sensor_index=1, value=50.0)))
    corrupt[4] = ord("7")
    stream = cycle(CYCLE_A) + bytes(corrupt) + cycle(CYCLE_B)
    reader, emitted = run_reader(FakeSerial([stream]))
    stats = reader.stats()
    assert stats["field_errors"] == 1
    assert stats["format_mismatches"] == 0
    assert stats["frames"] == 8
    assert np.allclose(emitted[0].sensors, CYCLE_B)


def test_stream_starting_mid_cycle() -> None:
    # 3,4,1,2 fills the first entry; the next 3,4,1,2 is emitted.
    order = [2, 3, 0, 1]
    stream = cycle(CYCLE_A, order) + cycle(CYCLE_B, order) + cycle(CYCLE_A, [2, 3])
    reader, emitted = run_reader(FakeSerial([stream]))
    assert len(emitted) == 1
    assert np.allclose(emitted[0].sensors, CYCLE_B)
    assert reader.stats()["frames"] == 10


def test_repeated_sensor_overwrites_in_flight_entry() -> None:
    stream = (
        cycle(CYCLE_A)
        + cycle(CYCLE_B, [0, 1])
        + encode_frame(Reading(sensor_index=1, value=-40.0))
        + cycle(CYCLE_B, [2, 3])
    )
    _, emitted = run_reader(FakeSerial([stream]))
    assert emitted[0].values() == [CYCLE_B[0], -40.0, CYCLE_B[2], CYCLE_B[3]]


def test_sensor_outside_configured_count_is_field_error() -> None:
    stream = cycle(CYCLE_A, [0, 1]) + cycle(CYCLE_A, [2]) + cycle(CYCLE_B, [0, 1])
    reader, emitted = run_reader(FakeSerial([stream]), fast_config(sensor_count=2))
    assert reader.stats()["field_errors"] == 1
    assert emitted[0].values() == CYCLE_B[:2]


def test_source_error_ends_loop() -> None:
    source = FakeSerial([cycle(CYCLE_A), cycle(CYCLE_B)], fail_when_drained=True)
    reader, emitted = run_reader(source)
    assert len(emitted) == 1
    assert reader.stats()["frames"] == 8


def test_trailing_partial_frame_is_left_unread() -> None:
    stream = cycle(CYCLE_A) + cycle(CYCLE_B) + encode_frame(Reading(sensor_index=0, value=1.0))[:7]
    reader, emitted = run_reader(FakeSerial([stream]))
    assert len(emitted) == 1
    assert reader.stats()["format_mismatches"] == 0


def test_stop_from_sink_ends_loop() -> None:
    source = FakeSerial([cycle(CYCLE_A), cycle(CYCLE_B), cycle(CYCLE_A), cycle(CYCLE_B)])
    reader = StreamReader(source, fast_config(), clock=ticking_clock())
    emitted: list[Entry] = []

    def stop_after_first(entry: Entry) -> None:
        emitted.append(entry)
        reader.stop()

    reader.register_sink(stop_after_first)
    reader.run()
    assert len(emitted) == 1
    assert reader.stats()["frames"] == 8


def test_stream_byte_source_drains_after_eof() -> None:
    data = cycle(CYCLE_A) + cycle(CYCLE_B)
    source = StreamByteSource(io.BytesIO(data), chunk_size=10)
    reader, emitted = run_reader(source)
    assert reader.stats()["frames"] == 8
    assert len(emitted) == 1
    assert not source.is_open


def test_replay_command_writes_csv(tmp_path: Path) -> None:
    dump = tmp_path / "dump.bin"
    dump.write_bytes(b"\x00" + cycle(CYCLE_A) + cycle(CYCLE_B) + cycle(CYCLE_A))
    out = tmp_path / "log.csv"
    result = CliRunner().invoke(app, ["replay", "--in", str(dump), "--out", str(out), "--quiet"])
    assert result.exit_code == 0, result.output
    assert "Replayed 12 frames into 2 entries" in result.output
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Date,Sensor1,Sensor2,Sensor3,Sensor4"
    assert len(lines) == 3
    assert lines[1].endswith(",21.600,22.100,-3.000,99.750")


def test_run_command_uses_opened_port(monkeypatch, tmp_path: Path) -> None:
    opened = []

    def fake_open_port(settings):
        opened.append(settings)
        return FakeSerial([cycle(CYCLE_A), cycle(CYCLE_B)])

    monkeypatch.setattr("thermolog.meter.runner.open_port", fake_open_port)
    out = tmp_path / "run.csv"
    result = CliRunner().invoke(
        app,
        [
            "run",
            "--port",
            "/dev/ttyFAKE",
            "--baud",
            "19200",
            "--out",
            str(out),
            "--set",
            "poll_interval_sec=0.0",
            "--set",
            "pacing_delay_sec=0.0",
        ],
    )
    assert result.exit_code == 0, result.output
    assert opened[0].port == "/dev/ttyFAKE"
    assert opened[0].baudrate == 19200
    assert "S1: 21.6   S2: 22.1   S3: -3.0   S4: 99.8" in result.output
    assert len(out.read_text(encoding="utf-8").splitlines()) == 2


def test_run_command_reports_unopenable_port(monkeypatch, tmp_path: Path) -> None:
    def failing_open_port(settings):
        raise serial.SerialException(f"could not open port {settings.port}")

    monkeypatch.setattr("thermolog.meter.runner.open_port", failing_open_port)
    result = CliRunner().invoke(app, ["run", "--port", "/dev/ttyNOPE", "--out", str(tmp_path / "x.csv")])
    assert result.exit_code == 1


class FakePortInfo:
    def __init__(self, device: str, description: str = "USB Serial"):
        self.device = device
        self.description = description


def test_first_port_picks_lowest_device(monkeypatch) -> None:
    monkeypatch.setattr(
        "thermolog.meter.runner.list_ports.comports",
        lambda: [FakePortInfo("/dev/ttyUSB1"), FakePortInfo("/dev/ttyUSB0")],
    )
    assert first_port() == "/dev/ttyUSB0"
    result = CliRunner().invoke(app, ["ports"])
    assert result.exit_code == 0
    assert result.output.splitlines()[0] == "/dev/ttyUSB0\tUSB Serial"


def test_first_port_without_devices(monkeypatch) -> None:
    monkeypatch.setattr("thermolog.meter.runner.list_ports.comports", lambda: [])
    with pytest.raises(serial.SerialException, match="No serial ports"):
        first_port()


def test_decode_failures_are_logged_with_kind_and_bytes(caplog) -> None:
    corrupt = bytearray(encode_frame(Reading(sensor_index=1, value=50.0)))
    corrupt[4] = ord("7")
    stream = b"x" + cycle(CYCLE_A) + bytes(corrupt) + cycle(CYCLE_B)
    misaligned = stream[:16]
    with caplog.at_level(logging.WARNING, logger="thermolog.meter.runner"):
        run_reader(FakeSerial([stream]))
    warnings = [record.getMessage() for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 2
    assert warnings[0].startswith("Skipping misaligned frame")
    assert repr(misaligned) in warnings[0]
    assert warnings[1].startswith("Dropping corrupt frame")
    assert repr(bytes(corrupt)) in warnings[1]
    assert "sign" in warnings[1]


def test_settle_delay_precedes_each_byte_drop(monkeypatch) -> None:
    stream = b"xyz" + cycle(CYCLE_A) + cycle(CYCLE_B)
    reader = StreamReader(
        FakeSerial([stream]), fast_config(settle_delay_sec=0.05), clock=ticking_clock()
    )
    waits: list[tuple[float, int]] = []

    def record_wait(timeout=None) -> bool:
        waits.append((timeout, len(reader._window)))
        return False

    monkeypatch.setattr(reader._stop_event, "wait", record_wait)
    reader.run()
    settles = [window for timeout, window in waits if timeout == 0.05]
    assert reader.stats()["format_mismatches"] == 3
    assert settles == [16, 16, 16]


def test_first_entry_is_stamped_when_run_starts() -> None:
    calls: list[str] = []
    ticks = ticking_clock()

    def clock() -> datetime:
        calls.append("tick")
        return ticks()

    emitted: list[Entry] = []
    reader = StreamReader(
        FakeSerial([cycle(CYCLE_A), cycle(CYCLE_B)]), fast_config(), sinks=[emitted.append], clock=clock
    )
    assert calls == []
    reader.run()
    # run start, then one new entry per completion
    assert len(calls) == 3
    assert emitted[0].timestamp == datetime(2026, 10, 18, 12, 0, 1)


@pytest.mark.parametrize("override", ["serial=5", "frame_length=sixteen"])
def test_replay_rejects_badly_typed_config(tmp_path: Path, override: str) -> None:
    dump = tmp_path / "dump.bin"
    dump.write_bytes(cycle(CYCLE_A))
    result = CliRunner().invoke(app, ["replay", "--in", str(dump), "--quiet", "--set", override])
    assert result.exit_code == 2
    assert "Invalid configuration" in result.output
