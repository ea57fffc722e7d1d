from __future__ import annotations

import pytest

from fakes import FakeHid


@pytest.fixture
def fake_hid(monkeypatch) -> FakeHid:
    """Install a fake ``hid`` module exposing one attached monitor."""
    backend = FakeHid()
    monkeypatch.setattr("co2mon.gather.device.hid", backend)
    return backend
