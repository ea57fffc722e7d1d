from __future__ import annotations

import dataclasses
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from .processing import Sample

HISTORY_CAPACITY = 500


@dataclass(frozen=True)
class HistoryEntry:
    co2_ppm: int
    temperature_celsius: float
    age_seconds: int

    def as_dict(self) -> dict:
        return dataclasses.asdict(self)


class HistoryStore:
    """
    Bounded FIFO of recent samples shared between the gather worker (the
    only writer) and any number of readers. One lock guards every
    operation so a snapshot always reflects a single point in time.
    """

    def __init__(self, capacity: int = HISTORY_CAPACITY, clock: Callable[[], float] = time.time):
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.capacity = capacity
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: Deque[Sample] = deque(maxlen=capacity)

    def append(self, sample: Sample) -> Sample:
        with self._lock:
            if sample.captured_at is None:
                sample = dataclasses.replace(sample, captured_at=self._clock())
            self._samples.append(sample)
        return sample

    def snapshot(self) -> List[HistoryEntry]:
        with self._lock:
            now = self._clock()
            return [
                HistoryEntry(
                    co2_ppm=sample.co2_ppm,
                    temperature_celsius=sample.temperature_celsius,
                    age_seconds=int(now - sample.captured_at),
                )
                for sample in self._samples
            ]

    def samples(self) -> List[Sample]:
        with self._lock:
            return list(self._samples)

    def latest(self) -> Optional[Sample]:
        with self._lock:
            return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
