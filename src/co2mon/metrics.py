"""Summary statistics for history snapshots."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .gather.history import HistoryEntry


@dataclass(frozen=True)
class SeriesStats:
    minimum: float
    maximum: float
    mean: float
    std: float


@dataclass(frozen=True)
class HistorySummary:
    count: int
    span_seconds: int
    co2_ppm: SeriesStats
    temperature_celsius: SeriesStats


def summarize(entries: Sequence[HistoryEntry]) -> HistorySummary:
    if not entries:
        raise ValueError("Cannot summarize an empty history")
    co2 = np.array([entry.co2_ppm for entry in entries], dtype=float)
    temp = np.array([entry.temperature_celsius for entry in entries], dtype=float)
    ages = np.array([entry.age_seconds for entry in entries], dtype=int)
    return HistorySummary(
        count=len(entries),
        span_seconds=int(ages.max() - ages.min()),
        co2_ppm=_series_stats(co2),
        temperature_celsius=_series_stats(temp),
    )


def _series_stats(values: np.ndarray) -> SeriesStats:
    return SeriesStats(
        minimum=float(values.min()),
        maximum=float(values.max()),
        mean=float(values.mean()),
        std=float(values.std()),
    )
