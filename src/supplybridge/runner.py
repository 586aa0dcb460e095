from __future__ import annotations

import logging
import time
from typing import BinaryIO, Dict, Optional, TextIO

from .aggregator import AggregatorThread, Window
from .config import BridgeSettings
from .errors import FrameOverflowError, SupplyBridgeError
from .frames import LineDecoder
from .reader import DeviceReader, SampleChannel, SerialSettings, iterate_binary_stream
from .transmitter import Transmitter, render_payload

logger = logging.getLogger(__name__)

STATS_LOG_INTERVAL = 60.0


class BridgeFault(SupplyBridgeError):
    """One side of the bridge died; the process has nothing left to do."""


class BridgeHost:
    """Wires the device reader and the aggregator together and supervises both."""

    def __init__(
        self,
        settings: BridgeSettings,
        transmitter: Optional[Transmitter] = None,
        stats_interval: float = STATS_LOG_INTERVAL,
    ):
        self.settings = settings
        self.channel = SampleChannel()
        self.transmitter = transmitter or Transmitter(settings.url, timeout=settings.http_timeout)
        self.reader = DeviceReader(
            SerialSettings(
                port=settings.port,
                baudrate=settings.baudrate,
                min_idle=settings.min_idle,
                backoff=settings.backoff,
                verbose=settings.verbose,
            ),
            self.channel,
        )
        self.aggregator = AggregatorThread(
            self.channel,
            self.transmitter,
            labels=settings.labels,
            initial_delay=settings.initial_delay,
            steady_delay=settings.delay,
        )
        self._stats_interval = stats_interval
        self._stop_requested = False

    def run(self) -> None:
        self._stop_requested = False
        self.aggregator.start()
        self.reader.start()
        next_log = time.monotonic() + self._stats_interval
        try:
            while self.reader.is_alive() and self.aggregator.is_alive():
                self.reader.join(timeout=1.0)
                if time.monotonic() >= next_log:
                    self._log_stats("Stats")
                    next_log = time.monotonic() + self._stats_interval
        finally:
            self.reader.stop()
            self.aggregator.stop()
            self.reader.join(timeout=5)
            self.aggregator.join(timeout=5)
            self._log_stats("Final stats")

        if self.reader.fatal_error is not None:
            raise BridgeFault("sample channel closed") from self.reader.fatal_error
        if self.aggregator.last_exception is not None:
            raise BridgeFault("aggregator terminated") from self.aggregator.last_exception
        if not self._stop_requested:
            raise BridgeFault("device reader terminated") from self.reader.last_exception

    def stop(self) -> None:
        self._stop_requested = True
        self.reader.stop()
        self.aggregator.stop()

    def stats(self) -> Dict[str, int]:
        stats = self.reader.stats()
        stats.update(self.aggregator.stats())
        return stats

    def _log_stats(self, prefix: str) -> None:
        stats = self.stats()
        parse_errors = sum(
            stats.get(key, 0)
            for key in (
                "non_ascii",
                "too_short",
                "unknown_measurement",
                "missing_delimiter",
                "missing_terminator",
                "invalid_number",
            )
        )
        logger.info(
            "%s: samples=%d parse_errors=%d overflows=%d stalls=%d reconnects=%d "
            "flushes=%d sent=%d failed=%d dropped=%d queued=%d",
            prefix,
            stats.get("samples", 0),
            parse_errors,
            stats.get("overflows", 0),
            stats.get("stalls", 0),
            stats.get("reconnects", 0),
            stats.get("flushes", 0),
            stats.get("sent", 0),
            stats.get("failed", 0),
            stats.get("dropped_samples", 0),
            stats.get("queued", 0),
        )


def run_from_stream(settings: BridgeSettings, source: BinaryIO, out: TextIO) -> int:
    """
    Decode a captured byte stream and print the payload that would be sent.

    Overflowing lines are skipped the way a reconnect would skip them.
    Returns the number of samples written.
    """
    decoder = LineDecoder()
    window = Window()
    for chunk in iterate_binary_stream(source):
        try:
            samples = decoder.feed(chunk)
        except FrameOverflowError as exc:
            logger.warning("Buffer full, dropping unterminated data: %s", exc)
            samples = exc.samples
        for sample in samples:
            window.add(sample)
    if decoder.discard():
        logger.info("Discarding data (unterminated last line)")
    out.write(render_payload(window.mapping(), settings.labels))
    stats = decoder.stats()
    logger.info(
        "Decoded %d samples from %d lines (overflows=%d)",
        stats["samples"],
        stats["lines"],
        stats["overflows"],
    )
    return len(window)

