"""Plotting helpers for gathered history."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

from .gather.history import HistoryEntry
from .reporting import history_dataframe


def generate_plots(entries: Sequence[HistoryEntry], output_dir: Path) -> Path:
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    df = history_dataframe(entries)
    minutes_ago = -df["age_seconds"].to_numpy(dtype=float) / 60.0

    fig, ax_co2 = plt.subplots(figsize=(10, 5))
    ax_co2.plot(minutes_ago, df["co2_ppm"], color="tab:blue", label="CO2")
    ax_co2.set_xlabel("Minutes ago")
    ax_co2.set_ylabel("CO2 (ppm)", color="tab:blue")
    ax_co2.tick_params(axis="y", labelcolor="tab:blue")

    ax_temp = ax_co2.twinx()
    ax_temp.plot(minutes_ago, df["temperature_celsius"], color="tab:orange", label="Temperature")
    ax_temp.set_ylabel("Temperature (°C)", color="tab:orange")
    ax_temp.tick_params(axis="y", labelcolor="tab:orange")

    ax_co2.set_title("CO2 and temperature")
    fig.tight_layout()
    out_path = output_dir / "history.png"
    fig.savefig(out_path, dpi=150)
    plt.close(fig)
    return out_path


def _require_matplotlib() -> Any:
    home_cache = Path.home() / ".cache" / "fontconfig"
    try:
        home_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError("matplotlib cannot write font cache in this environment") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install co2mon[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
