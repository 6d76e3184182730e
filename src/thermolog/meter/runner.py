from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Protocol

import serial
import typer
from serial.tools import list_ports

from .config import MeterConfig, load_config
from .entries import Entry
from .frames import FieldValueError, FormatMismatch, decode_frame
from .sinks import CsvLogger, EntrySink, console_sink

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from .plotting import LivePlotter


class ByteSource(Protocol):
    """The subset of :class:`serial.Serial` the reader relies on."""

    @property
    def in_waiting(self) -> int: ...

    @property
    def is_open(self) -> bool: ...

    def read(self, size: int = 1) -> bytes: ...


@dataclass
class SerialSettings:
    port: str
    baudrate: int = 9600
    timeout: float = 1.0


class StreamByteSource:
    """
    Present a binary file handle (stdin, a captured dump) as a byte source.

    Reports itself closed once the handle hits EOF; bytes already buffered stay
    readable so the reader can drain them.
    """

    def __init__(self, handle: BinaryIO, chunk_size: int = 256):
        self._handle = handle
        self._read = getattr(handle, "read1", handle.read)
        self._chunk_size = max(chunk_size, 1)
        self._high_water = max(self._chunk_size, 4096)
        self._buffer = bytearray()
        self._eof = False

    @property
    def in_waiting(self) -> int:
        if not self._eof and len(self._buffer) < self._high_water:
            chunk = self._read(self._chunk_size)
            if chunk:
                self._buffer.extend(chunk)
            else:
                self._eof = True
        return len(self._buffer)

    @property
    def is_open(self) -> bool:
        return not self._eof

    def read(self, size: int = 1) -> bytes:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def close(self) -> None:
        self._eof = True
        self._buffer.clear()


def first_port() -> str:
    ports = sorted(info.device for info in list_ports.comports())
    if not ports:
        raise serial.SerialException("No serial ports found")
    return ports[0]


def open_port(settings: SerialSettings) -> serial.Serial:
    return serial.Serial(
        port=settings.port,
        baudrate=settings.baudrate,
        timeout=settings.timeout,
    )


class StreamReader:
    """
    Turn a byte stream of fixed-width frames into complete multi-sensor entries.

    Frames are read into a window of ``frame_length`` bytes. A window that does
    not look like a frame means the stream is misaligned: after a short settle
    delay its first byte is dropped and the window is topped up from the source.
    A shaped frame with a bad field value is dropped whole. Decoded readings are
    accumulated into an :class:`Entry`; the first completed entry of a run may
    hold data from before logging started and is discarded, every later one is
    handed to the registered sinks.

    The loop ends when the source closes or raises, or when :meth:`stop` is
    called.
    """

    def __init__(
        self,
        source: ByteSource,
        config: MeterConfig,
        sinks: Optional[Iterable[EntrySink]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.source = source
        self.config = config.validate()
        self._sinks: List[EntrySink] = list(sinks or [])
        self._clock = clock
        self._stop_event = threading.Event()
        self._window = bytearray()
        self._first_entry_pending = True
        self._entry: Optional[Entry] = None
        self._stats: Dict[str, int] = {
            "frames": 0,
            "format_mismatches": 0,
            "field_errors": 0,
            "entries": 0,
            "discarded_entries": 0,
        }
        self._log = logging.getLogger(__name__)

    def register_sink(self, sink: EntrySink) -> None:
        self._sinks.append(sink)

    def stop(self) -> None:
        self._stop_event.set()

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def run(self) -> None:
        frame_length = self.config.frame_length
        self._entry = Entry(self._clock(), self.config.sensor_count)
        self._log.info(
            "Reading %d-byte frames for %d sensors", frame_length, self.config.sensor_count
        )
        try:
            while not self._stop_event.is_set():
                needed = frame_length - len(self._window)
                try:
                    if self.source.in_waiting < needed:
                        if not self.source.is_open:
                            self._log.info("Byte source closed")
                            break
                        self._stop_event.wait(self.config.poll_interval_sec)
                        continue
                    self._window.extend(self.source.read(needed))
                except (serial.SerialException, OSError) as exc:
                    self._log.info("Byte source unavailable: %s", exc)
                    break
                if len(self._window) < frame_length:
                    continue
                self._handle_window()
        finally:
            self._log.info(
                "Final stats: frames=%d entries=%d discarded_entries=%d format_mismatches=%d field_errors=%d",
                self._stats["frames"],
                self._stats["entries"],
                self._stats["discarded_entries"],
                self._stats["format_mismatches"],
                self._stats["field_errors"],
            )

    def _handle_window(self) -> None:
        block = bytes(self._window)
        try:
            reading = decode_frame(
                block,
                sensor_count=self.config.sensor_count,
                frame_length=self.config.frame_length,
            )
        except FormatMismatch as exc:
            self._stats["format_mismatches"] += 1
            self._log.warning("Skipping misaligned frame %r: %s", block, exc)
            self._stop_event.wait(self.config.settle_delay_sec)
            del self._window[0]
            return
        except FieldValueError as exc:
            self._stats["field_errors"] += 1
            self._log.warning("Dropping corrupt frame %r: %s", block, exc)
            self._window.clear()
            return
        self._window.clear()
        self._stats["frames"] += 1
        assert self._entry is not None
        if self._entry.apply(reading):
            self._complete_entry()

    def _complete_entry(self) -> None:
        entry = self._entry
        self._entry = Entry(self._clock(), self.config.sensor_count)
        if self._first_entry_pending:
            self._first_entry_pending = False
            self._stats["discarded_entries"] += 1
            self._log.debug("Discarding first entry %s", entry)
        else:
            self._stats["entries"] += 1
            for sink in self._sinks:
                sink(entry)
        self._stop_event.wait(self.config.pacing_delay_sec)


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level '{level}'", param_hint="--log-level")
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_config(config_path: Optional[Path], override: Optional[List[str]]) -> MeterConfig:
    try:
        return load_config(config_path, override)
    except (OSError, ValueError) as exc:
        raise typer.BadParameter(f"Invalid configuration: {exc}") from exc


def _run_reader(
    source: Any,
    cfg: MeterConfig,
    *,
    quiet: bool,
    plotter: Optional["LivePlotter"] = None,
) -> Dict[str, int]:
    csv_logger = CsvLogger(cfg.output_csv, precision=cfg.csv_precision) if cfg.output_csv else None
    reader = StreamReader(source, cfg)
    if csv_logger is not None:
        reader.register_sink(csv_logger.append)
    if not quiet:
        reader.register_sink(console_sink)
    if plotter is not None:
        reader.register_sink(plotter.on_entry)
    try:
        reader.run()
    except KeyboardInterrupt:
        logger.info("Stopping reader (Ctrl+C)")
    finally:
        reader.stop()
        if csv_logger is not None:
            csv_logger.close()
        close = getattr(source, "close", None)
        if close is not None:
            close()
    return reader.stats()


app = typer.Typer(add_completion=False, help="Four-channel thermometer logging utilities.")


@app.command()
def run(
    port: Optional[str] = typer.Option(
        None,
        "--port",
        "-p",
        help="Serial device. Use '-' to read from stdin. Defaults to the first detected port.",
    ),
    baudrate: Optional[int] = typer.Option(None, "--baud", help="Serial baudrate (overrides config)."),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Serial read timeout in seconds."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to meter JSON config."),
    override: Optional[List[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set settle_delay_sec=0.2 --set serial.baudrate=19200",
    ),
    out: Optional[Path] = typer.Option(None, "--out", help="CSV log file (overrides config)."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not echo entries to the console."),
    plot: bool = typer.Option(False, "--plot", help="Show a live Matplotlib temperature chart."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
):
    """Log entries from the thermometer until the port closes."""

    _configure_logging(log_level)
    cfg = _build_config(config_path, override)
    if out is not None:
        cfg.output_csv = out
    if baudrate is not None:
        cfg.serial.baudrate = baudrate
    if timeout is not None:
        cfg.serial.timeout = timeout

    plotter = None
    if plot:
        try:
            from .plotting import LivePlotter
        except ImportError as exc:
            raise typer.BadParameter("Matplotlib is required for --plot (pip install .[plot])") from exc
        plotter = LivePlotter(sensor_count=cfg.sensor_count)

    try:
        if port == "-":
            source: Any = StreamByteSource(sys.stdin.buffer)
        else:
            settings = SerialSettings(
                port=port or first_port(),
                baudrate=cfg.serial.baudrate,
                timeout=cfg.serial.timeout,
            )
            source = open_port(settings)
            logger.info("Connected to %s @ %d baud", settings.port, settings.baudrate)
    except serial.SerialException as exc:
        if plotter is not None:
            plotter.close()
        typer.echo(f"Unable to open serial port: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    try:
        _run_reader(source, cfg, quiet=quiet, plotter=plotter)
    finally:
        if plotter is not None:
            plotter.close()


@app.command()
def replay(
    input_path: Path = typer.Option(..., "--in", help="Captured byte dump", exists=True, readable=True),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to meter JSON config."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys."),
    out: Optional[Path] = typer.Option(None, "--out", help="CSV log file (overrides config)."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not echo entries to the console."),
    log_level: str = typer.Option("WARNING", "--log-level", help="Logging level."),
):
    """Decode a captured byte dump as if it came from the device."""

    _configure_logging(log_level)
    cfg = _build_config(config_path, override)
    if out is not None:
        cfg.output_csv = out
    cfg.poll_interval_sec = 0.0
    cfg.settle_delay_sec = 0.0
    cfg.pacing_delay_sec = 0.0
    with input_path.open("rb") as handle:
        stats = _run_reader(StreamByteSource(handle), cfg, quiet=quiet)
    typer.echo(
        f"Replayed {stats['frames']} frames into {stats['entries']} entries "
        f"(format_mismatches={stats['format_mismatches']} field_errors={stats['field_errors']})"
    )


@app.command()
def ports():
    """List serial ports visible to this host."""

    found = sorted(list_ports.comports(), key=lambda info: info.device)
    if not found:
        typer.echo("No serial ports found")
        return
    for info in found:
        typer.echo(f"{info.device}\t{info.description}")
