"""Report writers for gathered history."""
from __future__ import annotations

from pathlib import Path
from typing import Sequence

import pandas as pd

from .gather.history import HistoryEntry
from .metrics import HistorySummary, summarize

COLUMNS = ["co2_ppm", "temperature_celsius", "age_seconds"]


def history_dataframe(entries: Sequence[HistoryEntry]) -> pd.DataFrame:
    """Tabulate *entries* oldest first, one row per sample."""

    return pd.DataFrame([entry.as_dict() for entry in entries], columns=COLUMNS)


def export_history(
    entries: Sequence[HistoryEntry],
    output_dir: Path,
    *,
    figure_path: Path | None = None,
) -> None:
    """Persist the history table and a markdown summary to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    history_dataframe(entries).to_csv(output_dir / "history.csv", index=False)
    summary = summarize(entries) if entries else None
    _write_report_md(summary, output_dir, figure_path=figure_path)


def _write_report_md(
    summary: HistorySummary | None,
    output_dir: Path,
    *,
    figure_path: Path | None,
) -> None:
    lines: list[str] = []
    lines.append("# CO2 Monitor History")
    if summary is None:
        lines.append("*No samples gathered.*")
        (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
        return
    lines.append(f"*Samples:* {summary.count}  ")
    lines.append(f"*Span:* {summary.span_seconds} s  ")
    lines.append("")

    lines.append("| Quantity | Min | Max | Mean | Std |")
    lines.append("| --- | ---: | ---: | ---: | ---: |")
    co2 = summary.co2_ppm
    lines.append(f"| CO2 (ppm) | {co2.minimum:.0f} | {co2.maximum:.0f} | {co2.mean:.1f} | {co2.std:.1f} |")
    temp = summary.temperature_celsius
    lines.append(
        f"| Temperature (°C) | {temp.minimum:.2f} | {temp.maximum:.2f} | {temp.mean:.2f} | {temp.std:.2f} |"
    )
    lines.append("")

    if figure_path is not None:
        lines.append(f"![History]({figure_path.name})")
        lines.append("")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
