from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .history import HISTORY_CAPACITY

VENDOR_ID = 0x04D9
PRODUCT_ID = 0xA052


@dataclass
class DeviceConfig:
    vendor_id: int = VENDOR_ID
    product_id: int = PRODUCT_ID
    read_timeout_ms: int = 1000
    session_timeout_sec: Optional[float] = None


@dataclass
class LoopConfig:
    cadence_sec: float = 5.0
    retry_interval_sec: float = 1.0
    max_retries: Optional[int] = None
    join_timeout_sec: Optional[float] = None


@dataclass
class GatherConfig:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    history_capacity: int = HISTORY_CAPACITY
    output_csv: Path | None = None


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> GatherConfig:
    """
    Load a gatherer configuration from JSON (optional) and apply CLI-style
    overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["loop.cadence_sec=10", "device.vendor_id=0x04d9"]
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    device_data = merged.get("device") or {}
    loop_data = merged.get("loop") or {}
    config = GatherConfig(
        device=DeviceConfig(
            vendor_id=_coerce_id(device_data.get("vendor_id", VENDOR_ID)),
            product_id=_coerce_id(device_data.get("product_id", PRODUCT_ID)),
            read_timeout_ms=int(device_data.get("read_timeout_ms", 1000)),
            session_timeout_sec=_optional_float(device_data.get("session_timeout_sec")),
        ),
        loop=LoopConfig(
            cadence_sec=float(loop_data.get("cadence_sec", 5.0)),
            retry_interval_sec=float(loop_data.get("retry_interval_sec", 1.0)),
            max_retries=_optional_int(loop_data.get("max_retries")),
            join_timeout_sec=_optional_float(loop_data.get("join_timeout_sec")),
        ),
        history_capacity=int(merged.get("history_capacity", HISTORY_CAPACITY)),
        output_csv=Path(merged["output_csv"]) if merged.get("output_csv") else None,
    )
    validate_config(config)
    return config


def validate_config(config: GatherConfig) -> None:
    if config.loop.cadence_sec < 0:
        raise ValueError("loop.cadence_sec may not be negative")
    if config.loop.retry_interval_sec < 0:
        raise ValueError("loop.retry_interval_sec may not be negative")
    if config.loop.max_retries is not None and config.loop.max_retries < 1:
        raise ValueError("loop.max_retries must be at least 1 when set")
    if config.device.read_timeout_ms <= 0:
        raise ValueError("device.read_timeout_ms must be positive")
    if config.device.session_timeout_sec is not None and config.device.session_timeout_sec <= 0:
        raise ValueError("device.session_timeout_sec must be positive when set")
    if config.history_capacity <= 0:
        raise ValueError("history_capacity must be positive")
    for name in ("vendor_id", "product_id"):
        value = getattr(config.device, name)
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"device.{name} must fit in 16 bits, got {value:#x}")


def _coerce_id(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    if raw.lower() in {"null", "none"}:
        return None
    if raw.lower().startswith("0x"):
        return raw
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
