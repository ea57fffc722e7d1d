from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Sequence, Union

import numpy as np

FRAME_SIZE = 8
FRAME_TERMINATOR = 0x0D

OP_TEMPERATURE = 0x42
OP_CO2 = 0x50

SHUFFLE = np.array([2, 4, 0, 7, 1, 6, 5, 3], dtype=np.intp)
CSTATE = np.frombuffer(b"Htemp99e", dtype=np.uint8).astype(np.uint16)
CSTATE_SWAPPED = ((CSTATE >> 4) | (CSTATE << 4)) & 0xFF

RawFrame = Union[bytes, bytearray, Sequence[int]]


@dataclass(frozen=True)
class DecodedFrame:
    opcode: int
    value: int


def _as_array(data: RawFrame) -> np.ndarray:
    return np.asarray(bytearray(data), dtype=np.uint8)


def decrypt(raw: RawFrame, key: RawFrame) -> np.ndarray:
    """
    Undo the firmware obfuscation of one report: shuffle, xor with the
    session key, rotate right by three bits across byte boundaries and
    subtract the nibble-swapped "Htemp99e" table.
    """
    shuffled = _as_array(raw)[SHUFFLE]
    mixed = (shuffled ^ _as_array(key)).astype(np.uint16)
    rotated = ((mixed >> 3) | (np.roll(mixed, 1) << 5)) & 0xFF
    return ((0x100 + rotated - CSTATE_SWAPPED) & 0xFF).astype(np.uint8)


def encode_frame(opcode: int, value: int, key: RawFrame) -> bytes:
    """Build the raw report the device would send for ``opcode``/``value``."""
    plain = np.zeros(FRAME_SIZE, dtype=np.uint16)
    plain[0] = opcode & 0xFF
    plain[1] = (value >> 8) & 0xFF
    plain[2] = value & 0xFF
    plain[3] = (plain[0] + plain[1] + plain[2]) & 0xFF
    plain[4] = FRAME_TERMINATOR
    rotated = (plain + CSTATE_SWAPPED) & 0xFF
    mixed = ((rotated << 3) | (np.roll(rotated, -1) >> 5)) & 0xFF
    shuffled = mixed.astype(np.uint8) ^ _as_array(key)
    raw = np.zeros(FRAME_SIZE, dtype=np.uint8)
    raw[SHUFFLE] = shuffled
    return raw.tobytes()


def format_hex(data: Iterable[int]) -> str:
    return " ".join("%02X" % int(byte) for byte in data)


class FrameDecoder:
    """
    Validating decoder for 8-byte reports of one session key.
    Frames failing the checksum or terminator test are dropped and counted,
    which also resynchronises the stream after line noise.
    """

    def __init__(self, key: RawFrame):
        if len(key) != FRAME_SIZE:
            raise ValueError(f"Session key must be {FRAME_SIZE} bytes, got {len(key)}")
        self.key = bytes(bytearray(key))
        self._stats: Dict[str, int] = {
            "frames": 0,
            "checksum_errors": 0,
            "terminator_errors": 0,
            "length_errors": 0,
        }
        self._log = logging.getLogger(__name__)

    def decode(self, raw: RawFrame) -> Optional[DecodedFrame]:
        if len(raw) != FRAME_SIZE:
            self._stats["length_errors"] += 1
            self._log.debug("Discarding report with unexpected length: %d", len(raw))
            return None
        out = [int(byte) for byte in decrypt(raw, self.key)]
        if out[4] != FRAME_TERMINATOR:
            self._stats["terminator_errors"] += 1
            self._log.debug("Bad terminator: %s => %s", format_hex(raw), format_hex(out))
            return None
        if (out[0] + out[1] + out[2]) & 0xFF != out[3]:
            self._stats["checksum_errors"] += 1
            self._log.debug("Checksum error: %s => %s", format_hex(raw), format_hex(out))
            return None
        self._stats["frames"] += 1
        return DecodedFrame(opcode=out[0], value=out[1] << 8 | out[2])

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)


def decode(raw: RawFrame, key: RawFrame) -> Optional[DecodedFrame]:
    return FrameDecoder(key).decode(raw)
