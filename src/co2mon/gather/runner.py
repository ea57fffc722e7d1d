from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, TextIO

from .config import GatherConfig
from .device import DeviceSession, HidTransport, SessionCancelled, SessionError, SubsystemInitError
from .history import HistoryEntry, HistoryStore
from .processing import Sample, SamplePipeline

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], HidTransport]


@dataclass(frozen=True)
class StatusRecord:
    """One per completed cycle: either a sample or an error message."""

    kind: str
    message: Optional[str] = None
    co2_ppm: Optional[int] = None
    temperature_celsius: Optional[float] = None

    @classmethod
    def for_sample(cls, sample: Sample) -> "StatusRecord":
        return cls(kind="sample", co2_ppm=sample.co2_ppm, temperature_celsius=sample.temperature_celsius)

    @classmethod
    def for_error(cls, message: str) -> "StatusRecord":
        return cls(kind="error", message=message)

    @property
    def is_error(self) -> bool:
        return self.kind == "error"

    def as_json(self) -> Dict[str, Any]:
        if self.is_error:
            return {"error": self.message}
        return {"temperature": self.temperature_celsius, "co2": self.co2_ppm}


class JsonLineWriter:
    """Renders status records as one JSON object per line."""

    def __init__(self, stream: TextIO):
        self.stream = stream
        self._lock = threading.Lock()

    def __call__(self, record: StatusRecord) -> None:
        line = json.dumps(record.as_json())
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()


class GatherThread(threading.Thread):
    """
    Background worker that runs device sessions forever: retry after a
    fixed interval on failure, pace successful cycles to the configured
    cadence, stop when asked.
    """

    def __init__(
        self,
        config: Optional[GatherConfig] = None,
        transport_factory: TransportFactory = HidTransport,
        history: Optional[HistoryStore] = None,
    ) -> None:
        super().__init__(name="co2-gather", daemon=True)
        self.config = config or GatherConfig()
        self.history = history if history is not None else HistoryStore(self.config.history_capacity)
        self.pipeline = SamplePipeline(self.history, self.config.output_csv)
        self._transport_factory = transport_factory
        self._transport: Optional[HidTransport] = None
        self._stop_event = threading.Event()
        self._callbacks: List[Callable[[StatusRecord], None]] = []
        self._cycles = 0
        self._samples = 0
        self._failures = 0
        self._consecutive_failures = 0
        self.last_exception: Optional[Exception] = None

    def run(self) -> None:
        loop = self.config.loop
        logger.info(
            "Gathering from %04x:%04x every %.1fs",
            self.config.device.vendor_id,
            self.config.device.product_id,
            loop.cadence_sec,
        )
        try:
            while not self._stop_event.is_set():
                started = time.monotonic()
                try:
                    sample = self._run_session()
                    self._on_sample(sample)
                except SessionCancelled:
                    logger.debug("Session cancelled by stop request")
                    break
                except SessionError as exc:
                    if isinstance(exc, SubsystemInitError):
                        self._transport = None
                    logger.warning("Session failed: %s", exc)
                    if not self._on_failure(exc, str(exc)):
                        break
                    continue
                except OSError as exc:
                    # device I/O errors arrive as SessionError; this is the sample sink
                    logger.warning("Storing sample failed: %s", exc)
                    if not self._on_failure(exc, f"Failed storing sample: {exc}"):
                        break
                    continue
                except Exception as exc:
                    logger.exception("Unexpected error in gather loop")
                    if not self._on_failure(exc, f"Unexpected error: {exc}"):
                        break
                    continue
                elapsed = time.monotonic() - started
                self._stop_event.wait(max(0.0, loop.cadence_sec - elapsed))
        finally:
            self.pipeline.close()
            logger.info("Gather loop stopped (%s)", self.stats())

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def register_callback(self, callback: Callable[[StatusRecord], None]) -> None:
        self._callbacks.append(callback)

    def snapshot(self) -> List[HistoryEntry]:
        return self.history.snapshot()

    def stats(self) -> Dict[str, int]:
        return {"cycles": self._cycles, "samples": self._samples, "failures": self._failures}

    def _run_session(self) -> Sample:
        if self._transport is None:
            try:
                self._transport = self._transport_factory()
            except SubsystemInitError:
                raise
            except Exception as exc:
                raise SubsystemInitError(f"Failed opening hidapi! ({exc})") from exc
        session = DeviceSession(self._transport, self.config.device, cancel=self._stop_event)
        return session.run()

    def _on_sample(self, sample: Sample) -> None:
        # counters move only after the sample was stored everywhere
        stored = self.pipeline.process(sample)
        self._cycles += 1
        self._samples += 1
        self._consecutive_failures = 0
        self.last_exception = None
        logger.info("CO2: %4d ppm  T: %.1f C", stored.co2_ppm, stored.temperature_celsius)
        self._emit(StatusRecord.for_sample(stored))

    def _on_failure(self, exc: Exception, message: str) -> bool:
        self._cycles += 1
        self._failures += 1
        self._consecutive_failures += 1
        self.last_exception = exc
        self._emit(StatusRecord.for_error(message))
        max_retries = self.config.loop.max_retries
        if max_retries is not None and self._consecutive_failures >= max_retries:
            logger.error("Giving up after %d consecutive failures", self._consecutive_failures)
            return False
        self._stop_event.wait(self.config.loop.retry_interval_sec)
        return True

    def _emit(self, record: StatusRecord) -> None:
        for callback in self._callbacks:
            try:
                callback(record)
            except Exception:
                logger.exception("Status callback failed")


def start(
    config: Optional[GatherConfig] = None,
    transport_factory: TransportFactory = HidTransport,
    callbacks: Iterable[Callable[[StatusRecord], None]] = (),
) -> GatherThread:
    handle = GatherThread(config, transport_factory)
    for callback in callbacks:
        handle.register_callback(callback)
    handle.start()
    return handle


def stop(handle: GatherThread) -> None:
    handle.stop()
    handle.join(handle.config.loop.join_timeout_sec)
    if handle.is_alive():
        logger.warning("Gather thread still running after join timeout")


def snapshot(handle: GatherThread) -> List[HistoryEntry]:
    return handle.snapshot()
