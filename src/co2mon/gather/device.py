from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

try:
    import hid  # type: ignore[import]
except ImportError:  # pragma: no cover - reported as SubsystemInitError
    hid = None  # type: ignore[assignment]

from .config import DeviceConfig
from .frames import FRAME_SIZE, FrameDecoder
from .processing import Sample, SampleAssembler

logger = logging.getLogger(__name__)

# report id 0x00 followed by the session key
HANDSHAKE = bytes([0x00, 0xC4, 0xC6, 0xC0, 0x92, 0x40, 0x23, 0xDC, 0x96])


class SessionError(RuntimeError):
    """A device session failed; the gather loop retries from discovery."""


class SubsystemInitError(SessionError):
    pass


class DeviceNotFoundError(SessionError):
    pass


class DeviceOpenError(SessionError):
    pass


class HandshakeWriteError(SessionError):
    pass


class DeviceReadError(SessionError):
    pass


class SessionTimeoutError(SessionError):
    pass


class SessionCancelled(Exception):
    """Raised when a stop request interrupts a session between reads."""


class HidTransport:
    """
    Explicit HID capability handed to every component doing device I/O.
    Wraps the ``hid`` module from the hidapi distribution; tests pass a fake
    backend with the same surface.
    """

    def __init__(self, backend: Any = None):
        backend = backend if backend is not None else hid
        if backend is None:
            raise SubsystemInitError("Failed opening hidapi! Install the 'hidapi' package.")
        self._backend = backend

    def enumerate(self, vendor_id: int = 0, product_id: int = 0) -> List[Dict[str, Any]]:
        try:
            return list(self._backend.enumerate(vendor_id, product_id))
        except (OSError, ValueError) as exc:
            raise SubsystemInitError(f"Failed enumerating HID devices: {exc}") from exc

    def open(self, path: bytes) -> Any:
        handle = self._backend.device()
        handle.open_path(path)
        return handle


class DeviceSession:
    """One open -> handshake -> read-until-sample -> close cycle."""

    def __init__(
        self,
        transport: HidTransport,
        config: Optional[DeviceConfig] = None,
        cancel: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.config = config or DeviceConfig()
        self._cancel = cancel or threading.Event()
        self._clock = clock
        self.decoder: Optional[FrameDecoder] = None

    def run(self) -> Sample:
        info = self.find_device()
        handle = self._open(info)
        try:
            key = self._handshake(handle)
            return self._read_sample(handle, key)
        finally:
            try:
                handle.close()
            except Exception:
                logger.debug("Closing device handle failed", exc_info=True)

    def find_device(self) -> Dict[str, Any]:
        vendor_id = self.config.vendor_id
        product_id = self.config.product_id
        for info in self.transport.enumerate(vendor_id, product_id):
            if info.get("vendor_id") == vendor_id and info.get("product_id") == product_id:
                return info
        raise DeviceNotFoundError("Couldn't find CO2 Monitor!")

    def _open(self, info: Dict[str, Any]) -> Any:
        try:
            handle = self.transport.open(info["path"])
        except (OSError, ValueError) as exc:
            raise DeviceOpenError(f"Couldn't open CO2 Monitor! ({exc})") from exc
        logger.debug("Opened CO2 Monitor at %r", info["path"])
        return handle

    def _handshake(self, handle: Any) -> bytes:
        try:
            written = handle.send_feature_report(list(HANDSHAKE))
        except (OSError, ValueError) as exc:
            raise HandshakeWriteError(f"Failed sending key! ({exc})") from exc
        if written != len(HANDSHAKE):
            raise HandshakeWriteError(f"Failed sending key! ({written} of {len(HANDSHAKE)} bytes written)")
        return HANDSHAKE[1:]

    def _read_sample(self, handle: Any, key: bytes) -> Sample:
        self.decoder = FrameDecoder(key)
        assembler = SampleAssembler()
        timeout = self.config.session_timeout_sec
        deadline = self._clock() + timeout if timeout is not None else None
        while True:
            if self._cancel.is_set():
                raise SessionCancelled()
            if deadline is not None and self._clock() >= deadline:
                raise SessionTimeoutError(f"No complete sample within {timeout:.1f}s")
            try:
                data = handle.read(FRAME_SIZE, self.config.read_timeout_ms)
            except (OSError, ValueError) as exc:
                raise DeviceReadError(f"Failed reading from CO2 Monitor! ({exc})") from exc
            if not data:
                continue
            frame = self.decoder.decode(data)
            if frame is None:
                continue
            sample = assembler.ingest(frame)
            if sample is not None:
                logger.debug("Session complete: %s", self.decoder.stats())
                return sample
