from __future__ import annotations

import csv
import datetime as dt
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Optional, TextIO

from .frames import OP_CO2, OP_TEMPERATURE, DecodedFrame

if TYPE_CHECKING:
    from .history import HistoryStore

logger = logging.getLogger(__name__)

KELVIN_OFFSET = 273.15


@dataclass(frozen=True)
class Sample:
    """One completed CO2 + temperature reading."""

    co2_ppm: int
    temperature_celsius: float
    captured_at: Optional[float] = None


def raw_to_celsius(raw: int) -> float:
    # firmware reports temperature in 1/16 Kelvin
    return raw / 16.0 - KELVIN_OFFSET


class SampleAssembler:
    """
    Collects decoded frames of one session until both a CO2 and a
    temperature value have been seen, then emits a single Sample.
    """

    def __init__(self) -> None:
        self._values: List[int] = [0] * 256
        self.has_co2 = False
        self.has_temperature = False
        self._emitted = False

    @property
    def complete(self) -> bool:
        return self._emitted

    def ingest(self, frame: DecodedFrame) -> Optional[Sample]:
        if self._emitted:
            return None
        self._values[frame.opcode & 0xFF] = frame.value
        if frame.opcode == OP_CO2:
            self.has_co2 = True
        elif frame.opcode == OP_TEMPERATURE:
            self.has_temperature = True
        if not (self.has_co2 and self.has_temperature):
            return None
        self._emitted = True
        return Sample(
            co2_ppm=self._values[OP_CO2],
            temperature_celsius=raw_to_celsius(self._values[OP_TEMPERATURE]),
        )

    def value(self, opcode: int) -> int:
        return self._values[opcode & 0xFF]


class CsvLogger:
    """
    Lazily creates a CSV writer when the first sample arrives so that dry
    runs and tests never touch the filesystem.
    """

    fieldnames = ["captured_at", "timestamp", "co2_ppm", "temperature_celsius"]

    def __init__(self, path: Path):
        self.path = path
        self._handle: Optional[csv.DictWriter[str]] = None
        self._file_handle: Optional[TextIO] = None

    def append(self, sample: Sample) -> None:
        try:
            self._write(sample)
        except OSError:
            # reopen on the next sample instead of writing through a broken handle
            try:
                self.close()
            except OSError:
                logger.debug("Closing %s after write error failed", self.path, exc_info=True)
            raise

    def _write(self, sample: Sample) -> None:
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            write_header = not self.path.exists() or self.path.stat().st_size == 0
            self._file_handle = self.path.open("a", newline="", encoding="utf-8")
            self._handle = csv.DictWriter(self._file_handle, fieldnames=self.fieldnames)
            if write_header:
                self._handle.writeheader()
            logger.info("Logging samples to %s", self.path)
        assert self._handle is not None
        captured_at = sample.captured_at
        self._handle.writerow(
            {
                "captured_at": captured_at,
                "timestamp": dt.datetime.fromtimestamp(captured_at).isoformat(timespec="seconds")
                if captured_at is not None
                else "",
                "co2_ppm": sample.co2_ppm,
                "temperature_celsius": f"{sample.temperature_celsius:.2f}",
            }
        )
        if self._file_handle is not None:
            self._file_handle.flush()

    def close(self) -> None:
        file_handle = self._file_handle
        self._file_handle = None
        self._handle = None
        if file_handle:
            file_handle.close()


class SamplePipeline:
    """
    Glue that stores completed samples and fans them out to the optional
    CSV log and any registered callbacks.
    """

    def __init__(self, history: "HistoryStore", output_csv: Optional[Path] = None):
        self.history = history
        self.logger = CsvLogger(output_csv) if output_csv else None
        self._callbacks: List[Callable[[Sample], None]] = []

    def process(self, sample: Sample) -> Sample:
        stored = self.history.append(sample)
        if self.logger:
            self.logger.append(stored)
        for callback in self._callbacks:
            callback(stored)
        return stored

    def register_callback(self, callback: Callable[[Sample], None]) -> None:
        self._callbacks.append(callback)

    def close(self) -> None:
        if self.logger:
            self.logger.close()
