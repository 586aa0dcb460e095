from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import serial

from .errors import ChannelClosedError, FrameOverflowError, FrameStallError, FramingError
from .frames import LineDecoder, Sample

logger = logging.getLogger(__name__)


@dataclass
class SerialSettings:
    port: str
    baudrate: int = 115200
    min_idle: float = 0.5
    backoff: float = 5.0
    verbose: bool = False


class SampleChannel:
    """
    Unbounded FIFO between the reader and the aggregator.

    ``send`` never blocks. Once the consumer calls :meth:`close`, every
    further ``send`` raises :class:`ChannelClosedError`.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[Sample]" = queue.Queue()
        self._closed = threading.Event()

    def send(self, sample: Sample) -> None:
        if self._closed.is_set():
            raise ChannelClosedError("sample consumer has terminated")
        self._queue.put(sample)

    def receive(self, timeout: float) -> Optional[Sample]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed.set()

    def drain(self) -> List[Sample]:
        """Take everything still queued without waiting."""
        items: List[Sample] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()


class ConnectionState(str, enum.Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"


class DeviceReader(threading.Thread):
    """
    Owns the serial connection: opens it, reads bursts, and pushes samples
    into the channel. Any I/O or framing problem closes the port, waits a
    fixed backoff and reopens. Only a closed channel ends the loop.
    """

    def __init__(
        self,
        settings: SerialSettings,
        channel: SampleChannel,
        decoder: Optional[LineDecoder] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(daemon=True, name="device-reader")
        self.settings = settings
        self.channel = channel
        self.decoder = decoder or LineDecoder()
        self.state = ConnectionState.CLOSED
        self._monotonic = monotonic
        self._stop_event = threading.Event()
        self._serial_handle: Any = None
        self._frame_started: Optional[float] = None
        self._connected_once = False
        self._stats: Dict[str, int] = {
            "reconnects": 0,
            "open_failures": 0,
            "read_errors": 0,
            "stalls": 0,
            "emitted": 0,
        }
        self.last_exception: Optional[Exception] = None
        self.fatal_error: Optional[ChannelClosedError] = None
        self._log = logging.getLogger(__name__)

    def run(self) -> None:
        while not self._stop_event.is_set():
            self._serial_handle = None
            try:
                self.state = ConnectionState.OPENING
                self._serial_handle = self._open_serial()
                self.state = ConnectionState.OPEN
                if self._connected_once:
                    self._stats["reconnects"] += 1
                    self._log.info("Reconnected to %s", self.settings.port)
                else:
                    self._log.info("Connected to %s", self.settings.port)
                    self._connected_once = True
                self.last_exception = None
                self.decoder.reset()
                self._frame_started = None
                self._read_loop()
            except ChannelClosedError as exc:
                self.fatal_error = exc
                self._log.error("Sample consumer is gone, stopping reader: %s", exc)
            except FramingError as exc:
                self.last_exception = exc
                self._log.warning("Lost framing on %s: %s", self.settings.port, exc)
            except (serial.SerialException, OSError) as exc:
                self.last_exception = exc
                if self.state is ConnectionState.OPENING:
                    self._stats["open_failures"] += 1
                    self._log.warning("Failed to open port %s: %s", self.settings.port, exc)
                else:
                    self._stats["read_errors"] += 1
                    self._log.warning("Error reading from port %s: %s", self.settings.port, exc)
            except Exception as exc:
                self.last_exception = exc
                if self.state is ConnectionState.OPENING:
                    self._stats["open_failures"] += 1
                else:
                    self._stats["read_errors"] += 1
                self._log.exception("Unexpected error in serial reader")
            finally:
                self.state = ConnectionState.CLOSED
                self._close_handle()
            if self._stop_event.is_set() or self.fatal_error is not None:
                break
            self._log.info("Reconnecting in %.1fs", self.settings.backoff)
            self._stop_event.wait(self.settings.backoff)

    def stop(self) -> None:
        self._stop_event.set()
        self._close_handle()

    def stats(self) -> Dict[str, int]:
        stats = self.decoder.stats()
        stats.update(self._stats)
        return stats

    def _read_loop(self) -> None:
        while not self._stop_event.is_set():
            handle = self._serial_handle
            if handle is None:
                return
            size = max(1, min(handle.in_waiting or 1, self.decoder.buffer.free))
            data = handle.read(size)
            if not data:
                self._on_idle()
                continue
            if self.settings.verbose:
                self._log.debug("raw %s %r", data.hex(" "), data)
            now = self._monotonic()
            if self._frame_started is None:
                self._frame_started = now
            elif now - self._frame_started > self.settings.min_idle:
                self._stats["stalls"] += 1
                raise FrameStallError(
                    f"data kept arriving for {now - self._frame_started:.3f}s without an idle gap"
                )
            try:
                samples = self.decoder.feed(data)
            except FrameOverflowError as exc:
                self._emit_all(exc.samples)
                raise
            self._emit_all(samples)

    def _on_idle(self) -> None:
        dropped = self.decoder.discard()
        if dropped:
            self._log.info("Discarding data (%d bytes of unterminated line)", dropped)
        self._frame_started = None

    def _emit_all(self, samples: Iterable[Sample]) -> None:
        for sample in samples:
            self.channel.send(sample)
            self._stats["emitted"] += 1

    def _close_handle(self) -> None:
        handle, self._serial_handle = self._serial_handle, None
        if handle is None:
            return
        try:
            handle.close()
        except (serial.SerialException, OSError) as exc:
            self._log.debug("Error closing %s: %s", self.settings.port, exc)

    def _open_serial(self):
        return serial.Serial(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.min_idle,
        )


def iterate_binary_stream(handle: Any, chunk_size: int = 64) -> Iterator[bytes]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            break
        yield chunk
