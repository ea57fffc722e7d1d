from __future__ import annotations

import csv
from pathlib import Path

import pytest

from co2mon.gather.frames import DecodedFrame, OP_CO2, OP_TEMPERATURE
from co2mon.gather.history import HistoryStore
from co2mon.gather.processing import CsvLogger, Sample, SampleAssembler, SamplePipeline, raw_to_celsius


def test_temperature_conversion():
    assert raw_to_celsius(0) == pytest.approx(-273.15)
    assert raw_to_celsius(4776) == pytest.approx(25.35)
    assert raw_to_celsius(16 * 300) == pytest.approx(300 - 273.15)


def test_assembler_waits_for_both_quantities():
    assembler = SampleAssembler()
    for _ in range(20):
        assert assembler.ingest(DecodedFrame(OP_TEMPERATURE, 4776)) is None
    assert assembler.has_temperature
    assert not assembler.has_co2
    assert not assembler.complete


def test_assembler_ignores_unrelated_opcodes():
    assembler = SampleAssembler()
    for opcode in (0x41, 0x43, 0x6D, 0x6E, 0x71):
        assert assembler.ingest(DecodedFrame(opcode, 1)) is None
    assert assembler.value(0x6D) == 1
    assert not assembler.complete


def test_assembler_emits_once_with_latest_values():
    assembler = SampleAssembler()
    assert assembler.ingest(DecodedFrame(OP_CO2, 500)) is None
    assert assembler.ingest(DecodedFrame(OP_CO2, 400)) is None
    sample = assembler.ingest(DecodedFrame(OP_TEMPERATURE, 4776))
    assert sample is not None
    assert sample.co2_ppm == 400
    assert sample.temperature_celsius == pytest.approx(25.35)
    assert sample.captured_at is None
    assert assembler.complete

    assert assembler.ingest(DecodedFrame(OP_CO2, 900)) is None


def test_csv_logger_writes_header_once(tmp_path: Path):
    path = tmp_path / "logs" / "samples.csv"
    logger = CsvLogger(path)
    assert not path.exists()
    logger.append(Sample(800, 22.5, captured_at=1_700_000_000.0))
    logger.append(Sample(810, 22.75, captured_at=1_700_000_005.0))
    logger.close()

    # reopening appends without repeating the header
    logger = CsvLogger(path)
    logger.append(Sample(820, 23.0, captured_at=1_700_000_010.0))
    logger.close()

    with path.open(newline="", encoding="utf-8") as fh:
        rows = list(csv.DictReader(fh))
    assert [row["co2_ppm"] for row in rows] == ["800", "810", "820"]
    assert rows[0]["temperature_celsius"] == "22.50"


def test_csv_logger_recovers_after_write_error(tmp_path: Path):
    path = tmp_path / "samples.csv"
    path.mkdir()
    logger = CsvLogger(path)
    with pytest.raises(OSError):
        logger.append(Sample(800, 22.5, captured_at=1_700_000_000.0))

    path.rmdir()
    logger.append(Sample(810, 22.75, captured_at=1_700_000_005.0))
    logger.close()

    with path.open(newline="", encoding="utf-8") as fh:
        rows = list(csv.DictReader(fh))
    assert [row["co2_ppm"] for row in rows] == ["810"]


def test_pipeline_stamps_stores_and_notifies(tmp_path: Path):
    history = HistoryStore(clock=lambda: 1000.0)
    pipeline = SamplePipeline(history, tmp_path / "out.csv")
    seen = []
    pipeline.register_callback(seen.append)

    stored = pipeline.process(Sample(800, 22.5))
    pipeline.close()

    assert stored.captured_at == 1000.0
    assert seen == [stored]
    assert history.samples() == [stored]
    assert (tmp_path / "out.csv").exists()
