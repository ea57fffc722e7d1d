"""Command line interface for the co2mon package."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from .demo import run_demo
from .gather.config import load_config
from .gather.device import HANDSHAKE, HidTransport, SubsystemInitError
from .gather.frames import OP_CO2, OP_TEMPERATURE, FrameDecoder, decrypt, format_hex
from .gather.processing import raw_to_celsius
from .gather.runner import JsonLineWriter, start, stop
from .plotting import generate_plots
from .reporting import export_history

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]})


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level '{level}'", param_hint="--log-level")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_hex(text: str, param_hint: str) -> bytes:
    try:
        return bytes.fromhex(text.replace(":", " "))
    except ValueError as exc:
        raise typer.BadParameter(f"Not a hex byte string: {text!r}", param_hint=param_hint) from exc


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON gatherer config."),
    override: Optional[list[str]] = typer.Option(
        None,
        "--set",
        help="Override config keys, e.g. --set loop.cadence_sec=10 --set device.read_timeout_ms=500",
    ),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Append every sample to this CSV file."),
    report_dir: Optional[Path] = typer.Option(None, "--report", help="Export history report on exit."),
    duration: float = typer.Option(0.0, "--duration", help="Stop after N seconds (0 = until ENTER/Ctrl+C)."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Gather samples from the monitor and print one JSON line per cycle."""

    _configure_logging(log_level)
    try:
        cfg = load_config(config_path, override)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    if csv_path is not None:
        cfg.output_csv = csv_path

    handle = start(cfg, callbacks=[JsonLineWriter(sys.stdout)])
    try:
        if duration > 0:
            handle.join(duration)
        elif sys.stdin.isatty():
            typer.echo("Press ENTER to exit.", err=True)
            sys.stdin.readline()
        else:
            while handle.is_alive():
                handle.join(1.0)
    except KeyboardInterrupt:
        logger.info("Stopping gatherer (Ctrl+C)")
    finally:
        stop(handle)

    if report_dir is not None:
        entries = handle.snapshot()
        figure_path = None
        try:
            figure_path = generate_plots(entries, report_dir) if entries else None
        except RuntimeError as exc:
            typer.echo(f"[warning] plotting skipped: {exc}", err=True)
        export_history(entries, report_dir, figure_path=figure_path)
        typer.echo(f"Report written to {report_dir}", err=True)


@app.command()
def devices(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON gatherer config."),
    show_all: bool = typer.Option(False, "--all", help="List every HID device, not only monitors."),
) -> None:
    """List attached HID devices matching the monitor's vendor/product id."""

    try:
        cfg = load_config(config_path)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    try:
        transport = HidTransport()
        if show_all:
            found = transport.enumerate()
        else:
            found = transport.enumerate(cfg.device.vendor_id, cfg.device.product_id)
    except SubsystemInitError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    if not found:
        typer.echo("No matching devices.")
        raise typer.Exit(code=1)
    for info in found:
        path = info.get("path", b"")
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        typer.echo(
            f"{info.get('vendor_id', 0):04x}:{info.get('product_id', 0):04x} {path} "
            f"{info.get('manufacturer_string') or ''} {info.get('product_string') or ''}".rstrip()
        )


@app.command()
def decode(
    frame: str = typer.Argument(..., help="Raw 8-byte report as hex, e.g. 'F5 E4 66 20 81 46 BF 2A'."),
    key: str = typer.Option(HANDSHAKE[1:].hex(), "--key", help="Session key as hex (8 bytes)."),
) -> None:
    """Decode one captured report for diagnostics."""

    raw = _parse_hex(frame, "FRAME")
    key_bytes = _parse_hex(key, "--key")
    if len(raw) != 8:
        raise typer.BadParameter(f"Expected 8 bytes, got {len(raw)}", param_hint="FRAME")
    if len(key_bytes) != 8:
        raise typer.BadParameter(f"Expected 8 bytes, got {len(key_bytes)}", param_hint="--key")

    typer.echo(f"raw:       {format_hex(raw)}")
    typer.echo(f"decrypted: {format_hex(decrypt(raw, key_bytes))}")
    decoded = FrameDecoder(key_bytes).decode(raw)
    if decoded is None:
        typer.echo("Checksum error")
        raise typer.Exit(code=1)
    typer.echo(f"opcode:    0x{decoded.opcode:02X}")
    typer.echo(f"value:     {decoded.value} (0x{decoded.value:04X})")
    if decoded.opcode == OP_CO2:
        typer.echo(f"CO2:       {decoded.value} ppm")
    elif decoded.opcode == OP_TEMPERATURE:
        typer.echo(f"TMP:       {raw_to_celsius(decoded.value):.2f} °C")


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo report."),
    seconds: float = typer.Option(5.0, "--seconds", help="How long to gather from the simulated monitor."),
) -> None:
    """Gather from a simulated monitor and write a report."""

    count = run_demo(out_dir, seconds=seconds)
    typer.echo(f"Gathered {count} simulated samples; report written to {out_dir}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
