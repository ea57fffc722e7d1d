from __future__ import annotations

import io
import json
import threading
import time
from typing import List

import pytest

from fakes import FakeDevice, FakeHid, endless_reports, frame
from co2mon.gather.config import DeviceConfig, GatherConfig, LoopConfig
from co2mon.gather.device import HidTransport, SubsystemInitError
from co2mon.gather.frames import OP_TEMPERATURE
from co2mon.gather.processing import Sample
from co2mon.gather.runner import GatherThread, JsonLineWriter, StatusRecord, snapshot, start, stop


class Recorder:
    def __init__(self) -> None:
        self.records: List[StatusRecord] = []
        self.times: List[float] = []
        self._cond = threading.Condition()

    def __call__(self, record: StatusRecord) -> None:
        with self._cond:
            self.records.append(record)
            self.times.append(time.monotonic())
            self._cond.notify_all()

    def wait_for(self, count: int, timeout: float = 5.0) -> None:
        with self._cond:
            assert self._cond.wait_for(lambda: len(self.records) >= count, timeout=timeout), self.records


def make_config(**loop) -> GatherConfig:
    return GatherConfig(device=DeviceConfig(read_timeout_ms=10), loop=LoopConfig(**loop))


def test_absent_device_reports_error_every_retry_interval():
    backend = FakeHid(infos=[])
    recorder = Recorder()
    handle = start(make_config(retry_interval_sec=0.1), lambda: HidTransport(backend), [recorder])
    try:
        recorder.wait_for(4)
        assert handle.is_alive()
    finally:
        stop(handle)
    assert not handle.is_alive()
    assert all(record.is_error for record in recorder.records)
    assert recorder.records[0].message == "Couldn't find CO2 Monitor!"
    gaps = [b - a for a, b in zip(recorder.times, recorder.times[1:])]
    assert all(gap >= 0.08 for gap in gaps)
    assert snapshot(handle) == []


def test_samples_are_stored_and_reported_each_cycle():
    backend = FakeHid(device_factory=lambda: FakeDevice(endless_reports(co2=800, temp_raw=4776)))
    recorder = Recorder()
    handle = start(make_config(cadence_sec=0.1), lambda: HidTransport(backend), [recorder])
    try:
        recorder.wait_for(3)
    finally:
        stop(handle)

    assert all(not record.is_error for record in recorder.records)
    assert recorder.records[0].co2_ppm == 800
    assert recorder.records[0].temperature_celsius == pytest.approx(25.35)
    entries = snapshot(handle)
    assert len(entries) == len(recorder.records)
    assert all(entry.co2_ppm == 800 for entry in entries)
    # one fresh handshake and handle per cycle; stop may cancel one more session
    assert len(backend.devices) in (len(entries), len(entries) + 1)
    assert all(device.closed for device in backend.devices)
    assert all(len(device.feature_reports) == 1 for device in backend.devices)
    gaps = [b - a for a, b in zip(recorder.times, recorder.times[1:])]
    assert all(gap >= 0.05 for gap in gaps)


def test_transport_factory_failure_is_retried():
    backend = FakeHid()
    calls = []

    def factory() -> HidTransport:
        calls.append(1)
        if len(calls) == 1:
            raise SubsystemInitError("Failed opening hidapi!")
        return HidTransport(backend)

    recorder = Recorder()
    handle = start(make_config(retry_interval_sec=0.05, cadence_sec=0.05), factory, [recorder])
    try:
        recorder.wait_for(3)
    finally:
        stop(handle)
    assert recorder.records[0].is_error
    assert recorder.records[0].message == "Failed opening hidapi!"
    assert not recorder.records[1].is_error
    # the capability is created once and reused afterwards
    assert len(calls) == 2


def test_stop_interrupts_stuck_session():
    backend = FakeHid(device_factory=lambda: FakeDevice([frame(OP_TEMPERATURE, 4776)]))
    recorder = Recorder()
    handle = start(make_config(), lambda: HidTransport(backend), [recorder])
    time.sleep(0.2)
    started = time.monotonic()
    stop(handle)
    assert time.monotonic() - started < 2.0
    assert not handle.is_alive()
    assert recorder.records == []
    assert backend.devices[0].closed


def test_stop_interrupts_cadence_wait():
    backend = FakeHid(device_factory=lambda: FakeDevice(endless_reports()))
    recorder = Recorder()
    handle = start(make_config(cadence_sec=30.0), lambda: HidTransport(backend), [recorder])
    recorder.wait_for(1)
    started = time.monotonic()
    stop(handle)
    assert time.monotonic() - started < 2.0
    assert len(recorder.records) == 1


def test_max_retries_ends_loop():
    recorder = Recorder()
    handle = start(
        make_config(retry_interval_sec=0.01, max_retries=2),
        lambda: HidTransport(FakeHid(infos=[])),
        [recorder],
    )
    handle.join(timeout=5)
    assert not handle.is_alive()
    assert len(recorder.records) == 2
    assert handle.stats() == {"cycles": 2, "samples": 0, "failures": 2}


def test_unexpected_error_is_reported_and_retried():
    class ExplodingDevice(FakeDevice):
        def send_feature_report(self, data) -> int:
            raise KeyError("boom")

    devices = iter([ExplodingDevice()])
    backend = FakeHid(device_factory=lambda: next(devices, None) or FakeDevice(endless_reports()))
    recorder = Recorder()
    handle = start(make_config(retry_interval_sec=0.01, cadence_sec=0.01), lambda: HidTransport(backend), [recorder])
    try:
        recorder.wait_for(2)
    finally:
        stop(handle)
    assert recorder.records[0].is_error
    assert "boom" in recorder.records[0].message
    assert not recorder.records[1].is_error


def test_failing_callback_does_not_stop_loop():
    def broken(record: StatusRecord) -> None:
        raise RuntimeError("display went away")

    recorder = Recorder()
    handle = GatherThread(make_config(retry_interval_sec=0.01), lambda: HidTransport(FakeHid(infos=[])))
    handle.register_callback(broken)
    handle.register_callback(recorder)
    handle.start()
    try:
        recorder.wait_for(2)
        assert handle.is_alive()
    finally:
        stop(handle)


def test_unwritable_csv_is_reported_and_loop_keeps_running(tmp_path):
    config = make_config(retry_interval_sec=0.01, cadence_sec=0.01)
    # a directory can never be opened for appending
    config.output_csv = tmp_path
    backend = FakeHid(device_factory=lambda: FakeDevice(endless_reports()))
    recorder = Recorder()
    handle = start(config, lambda: HidTransport(backend), [recorder])
    try:
        recorder.wait_for(3)
        assert handle.is_alive()
    finally:
        stop(handle)
    assert not handle.is_alive()
    assert all(record.is_error for record in recorder.records)
    assert recorder.records[0].message.startswith("Failed storing sample")
    assert handle.stats()["samples"] == 0
    assert handle.stats()["failures"] == len(recorder.records)


def test_json_line_writer():
    stream = io.StringIO()
    writer = JsonLineWriter(stream)
    writer(StatusRecord.for_error("Couldn't find CO2 Monitor!"))
    writer(StatusRecord.for_sample(Sample(co2_ppm=800, temperature_celsius=22.5)))
    lines = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert lines == [
        {"error": "Couldn't find CO2 Monitor!"},
        {"temperature": 22.5, "co2": 800},
    ]
