"""Simulated CO2 monitor for demos and offline runs."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from .gather.config import GatherConfig, LoopConfig
from .gather.device import HidTransport
from .gather.frames import FRAME_SIZE, OP_CO2, OP_TEMPERATURE, encode_frame
from .gather.processing import KELVIN_OFFSET
from .gather.runner import GatherThread
from .plotting import generate_plots
from .reporting import export_history

logger = logging.getLogger(__name__)

SIMULATED_PATH = b"simulated:0"
# unrelated opcodes the real firmware interleaves with the useful ones
FILLER_OPCODES = (0x41, 0x43, 0x6D, 0x6E, 0x71)


class SimulatedDevice:
    """Speaks the obfuscated report protocol of the real monitor."""

    def __init__(self, rng: np.random.Generator, noise: float = 0.1):
        self._rng = rng
        self._noise = noise
        self._key: Optional[bytes] = None
        self._co2 = 650.0
        self._temp_c = 22.0
        self.opened = False

    def open_path(self, path: bytes) -> None:
        if path != SIMULATED_PATH:
            raise OSError(f"open failed: {path!r}")
        self.opened = True

    def send_feature_report(self, data) -> int:
        if not self.opened:
            raise ValueError("not open")
        payload = bytes(bytearray(data))
        self._key = payload[1:]
        return len(payload)

    def read(self, max_length: int, timeout_ms: int = 0) -> List[int]:
        if not self.opened:
            raise ValueError("not open")
        if self._key is None:
            return []
        if self._rng.random() < self._noise:
            return list(self._rng.integers(0, 256, size=FRAME_SIZE, dtype=np.uint8).tobytes())
        opcode = int(self._rng.choice((OP_CO2, OP_TEMPERATURE) + FILLER_OPCODES))
        if opcode == OP_CO2:
            self._co2 = float(np.clip(self._co2 + self._rng.normal(scale=15.0), 400.0, 3000.0))
            value = int(round(self._co2))
        elif opcode == OP_TEMPERATURE:
            self._temp_c += float(self._rng.normal(scale=0.05))
            value = int(round((self._temp_c + KELVIN_OFFSET) * 16))
        else:
            value = int(self._rng.integers(0, 0x10000))
        return list(encode_frame(opcode, value, self._key))[:max_length]

    def close(self) -> None:
        self.opened = False


class SimulatedHid:
    """Stand-in for the ``hid`` module exposing a single simulated monitor."""

    def __init__(self, seed: int = 42, vendor_id: int = 0x04D9, product_id: int = 0xA052):
        self._rng = np.random.default_rng(seed)
        self._info: Dict[str, Any] = {
            "path": SIMULATED_PATH,
            "vendor_id": vendor_id,
            "product_id": product_id,
            "manufacturer_string": "Holtek",
            "product_string": "USB-zyTemp (simulated)",
        }

    def enumerate(self, vendor_id: int = 0, product_id: int = 0) -> List[Dict[str, Any]]:
        return [dict(self._info)]

    def device(self) -> SimulatedDevice:
        return SimulatedDevice(self._rng)


def run_demo(out_dir: Path, seconds: float = 5.0, cadence_sec: float = 0.25) -> int:
    backend = SimulatedHid()
    config = GatherConfig(loop=LoopConfig(cadence_sec=cadence_sec, retry_interval_sec=0.1))
    worker = GatherThread(config, transport_factory=lambda: HidTransport(backend))
    worker.start()
    try:
        time.sleep(seconds)
    finally:
        worker.stop()
        worker.join()
    entries = worker.snapshot()

    figure_path = None
    try:
        figure_path = generate_plots(entries, out_dir)
    except RuntimeError as exc:
        logger.warning("plotting skipped: %s", exc)

    export_history(entries, out_dir, figure_path=figure_path)
    return len(entries)
