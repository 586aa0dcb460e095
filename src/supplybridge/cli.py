"""Command line interface for the supply telemetry bridge."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import DEFAULT_PORT, DEFAULT_URL, load_settings
from .errors import ConfigError
from .runner import BridgeFault, BridgeHost, run_from_stream

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, context_settings={"help_option_names": ["-h", "--help"]})


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def run(
    port: str = typer.Option(DEFAULT_PORT, "--port", "-p", help="Path to serial port. Use '-' to read from stdin."),
    rate: int = typer.Option(115200, "--rate", "-r", help="Baud rate."),
    url: str = typer.Option(DEFAULT_URL, "--url", "-u", help="Target URL for metric server."),
    delay: int = typer.Option(5000, "--delay", "-d", help="Delay between updates in ms."),
    timeout: int = typer.Option(5000, "--timeout", "-t", help="Timeout for http requests in ms."),
    idle: int = typer.Option(500, "--idle", help="Minimum idle gap between data bursts in ms."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging and raw serial dump."),
    label: Optional[List[str]] = typer.Option(None, "--label", help="Extra metric label, key=value. Repeatable."),
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="JSON settings file applied over the flags.", exists=True, dir_okay=False
    ),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override a setting, e.g. --set min_idle=0.2 --set backoff=2"
    ),
) -> None:
    """Forward power supply samples from the serial port to the metric server."""

    base: Dict[str, Any] = {
        "port": port,
        "baudrate": rate,
        "url": url,
        "delay": delay / 1000.0,
        "http_timeout": timeout / 1000.0,
        "min_idle": idle / 1000.0,
        "verbose": verbose,
        "labels": list(label or []),
    }
    try:
        settings = load_settings(config_path, override, base=base)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc

    configure_logging(settings.verbose)

    if settings.port == "-":
        run_from_stream(settings, sys.stdin.buffer, sys.stdout)
        return

    logger.info(
        "Starting bridge port=%s rate=%d url=%s delay=%.1fs idle=%.3fs labels=%s",
        settings.port,
        settings.baudrate,
        settings.url,
        settings.delay,
        settings.min_idle,
        settings.labels.render() or "-",
    )
    host = BridgeHost(settings)
    try:
        host.run()
    except KeyboardInterrupt:
        logger.info("Stopping bridge (Ctrl+C)")
    except BridgeFault as exc:
        logger.error("Bridge stopped: %s", exc)
        raise typer.Exit(code=1) from exc


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
