"""
Gatherer for the USB CO2 monitor (04d9:a052).

The subpackage holds the wire protocol (frame decoding and sample assembly),
the bounded sample history and the background worker that keeps a device
session cycle running. The reporting and plotting helpers in `co2mon` only
consume history snapshots produced here.
"""

from .config import DeviceConfig, GatherConfig, LoopConfig, load_config
from .device import (
    DeviceNotFoundError,
    DeviceOpenError,
    DeviceReadError,
    DeviceSession,
    HandshakeWriteError,
    HidTransport,
    SessionCancelled,
    SessionError,
    SessionTimeoutError,
    SubsystemInitError,
)
from .frames import DecodedFrame, FrameDecoder, decode, encode_frame
from .history import HistoryEntry, HistoryStore
from .processing import Sample, SampleAssembler
from .runner import GatherThread, JsonLineWriter, StatusRecord, snapshot, start, stop

__all__ = [
    "DeviceConfig",
    "GatherConfig",
    "LoopConfig",
    "load_config",
    "DeviceNotFoundError",
    "DeviceOpenError",
    "DeviceReadError",
    "DeviceSession",
    "HandshakeWriteError",
    "HidTransport",
    "SessionCancelled",
    "SessionError",
    "SessionTimeoutError",
    "SubsystemInitError",
    "DecodedFrame",
    "FrameDecoder",
    "decode",
    "encode_frame",
    "HistoryEntry",
    "HistoryStore",
    "Sample",
    "SampleAssembler",
    "GatherThread",
    "JsonLineWriter",
    "StatusRecord",
    "snapshot",
    "start",
    "stop",
]
