from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from .config import LabelSet
from .frames import MeasurementKind, Sample
from .reader import SampleChannel
from .transmitter import Transmitter, render_payload

logger = logging.getLogger(__name__)

INITIAL_FLUSH_DELAY = 2.0
STEADY_FLUSH_DELAY = 5.0
RECEIVE_WAIT = 1.0


class Window:
    """Samples collected since the last flush, grouped by kind in arrival order."""

    def __init__(self) -> None:
        self._samples: Dict[MeasurementKind, List[Sample]] = {}
        self._count = 0

    def add(self, sample: Sample) -> None:
        # every sample is kept; several points per metric may go out in one payload
        self._samples.setdefault(sample.kind, []).append(sample)
        self._count += 1

    def mapping(self) -> Dict[MeasurementKind, List[Sample]]:
        return {kind: list(self._samples[kind]) for kind in MeasurementKind if kind in self._samples}

    def clear(self) -> None:
        self._samples.clear()
        self._count = 0

    def __len__(self) -> int:
        return self._count


class FlushSchedule:
    """
    First flush after ``initial_delay``, every later one after ``steady_delay``.
    The switch to the steady interval happens once and is permanent.
    """

    def __init__(self, initial_delay: float, steady_delay: float, start: float):
        self.initial_delay = initial_delay
        self.steady_delay = steady_delay
        self._interval = initial_delay
        self._last = start

    @property
    def interval(self) -> float:
        return self._interval

    def due(self, now: float) -> bool:
        return now - self._last >= self._interval

    def mark(self, now: float) -> None:
        self._last = now
        self._interval = self.steady_delay


class AggregatorThread(threading.Thread):
    def __init__(
        self,
        channel: SampleChannel,
        transmitter: Transmitter,
        labels: LabelSet = LabelSet(),
        initial_delay: float = INITIAL_FLUSH_DELAY,
        steady_delay: float = STEADY_FLUSH_DELAY,
        receive_wait: float = RECEIVE_WAIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(daemon=True, name="aggregator")
        self.channel = channel
        self.transmitter = transmitter
        self.window = Window()
        self._label_block = labels.render()
        self._clock = clock
        self._receive_wait = receive_wait
        self.schedule = FlushSchedule(initial_delay, steady_delay, clock())
        self._stop_event = threading.Event()
        self._stats: Dict[str, int] = {
            "received": 0,
            "flushes": 0,
            "empty_flushes": 0,
            "dropped_samples": 0,
        }
        self.last_exception: Optional[Exception] = None

    def run(self) -> None:
        try:
            while not self._stop_event.is_set():
                self.poll()
            self.channel.close()
            for sample in self.channel.drain():
                self.window.add(sample)
                self._stats["received"] += 1
            if len(self.window):
                self.flush()
        except Exception as exc:
            self.last_exception = exc
            logger.exception("Aggregator stopped unexpectedly")
        finally:
            self.channel.close()
            self.transmitter.close()

    def stop(self) -> None:
        self._stop_event.set()

    def poll(self) -> None:
        """Wait once for a sample, then flush if the window is due."""
        sample = self.channel.receive(self._receive_wait)
        if sample is not None:
            self.window.add(sample)
            self._stats["received"] += 1
        now = self._clock()
        if self.schedule.due(now):
            self.flush()
            self.schedule.mark(now)

    def flush(self) -> bool:
        count = len(self.window)
        self._stats["flushes"] += 1
        if not count:
            self._stats["empty_flushes"] += 1
            logger.debug("Nothing to send")
            return True
        try:
            payload = render_payload(self.window.mapping(), self._label_block)
            logger.info("Sending %d samples", count)
            logger.debug("Payload:\n%s", payload)
            ok = self.transmitter.send(payload)
            if not ok:
                self._stats["dropped_samples"] += count
                logger.warning("Dropping batch of %d samples", count)
            return ok
        finally:
            self.window.clear()

    def stats(self) -> Dict[str, int]:
        stats = dict(self._stats)
        stats.update(self.transmitter.stats())
        stats["window"] = len(self.window)
        stats["queued"] = self.channel.qsize()
        return stats
