from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .errors import FrameOverflowError, LineParseError, ParseErrorKind

FRAME_CAPACITY = 256
TERMINATOR = 0x0A
CARRIAGE_RETURN = 0x0D
DELIMITER = 0x20

# Plain decimal literal or the inf/nan spellings; no underscores, no padding.
_NUMBER_RE = re.compile(
    rb"[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan)",
    re.IGNORECASE,
)


class MeasurementKind(enum.Enum):
    POWER = ("P", "supply_consumed_power")
    CURRENT = ("I", "supply_current")
    VOLTAGE = ("U", "supply_voltage")

    def __init__(self, code: str, metric: str) -> None:
        self.code = code
        self.metric = metric

    @classmethod
    def from_code(cls, code: int) -> "MeasurementKind":
        for kind in cls:
            if ord(kind.code) == code:
                return kind
        raise ValueError(f"unknown measurement code {code!r}")


@dataclass(frozen=True)
class Sample:
    kind: MeasurementKind
    timestamp: float
    value: float


class FrameBuffer:
    """
    Fixed-capacity accumulator that cuts a raw byte stream into ``\\n``
    terminated lines. A trailing ``\\r`` stays on the line so the parser can
    check it.
    """

    def __init__(self, capacity: int = FRAME_CAPACITY):
        self.capacity = capacity
        self._storage = bytearray(capacity)
        self._length = 0

    @property
    def length(self) -> int:
        return self._length

    @property
    def free(self) -> int:
        return self.capacity - self._length

    def pending(self) -> bytes:
        return bytes(self._storage[: self._length])

    def reset(self) -> None:
        self._length = 0

    def append(self, data: bytes) -> List[bytes]:
        lines: List[bytes] = []
        view = memoryview(data)
        while True:
            take = min(len(view), self.free)
            self._storage[self._length : self._length + take] = view[:take]
            self._length += take
            view = view[take:]
            lines.extend(self._drain())
            if self._length >= self.capacity:
                self.reset()
                raise FrameOverflowError(f"no terminator within {self.capacity} bytes", lines)
            if not view:
                return lines

    def _drain(self) -> List[bytes]:
        lines: List[bytes] = []
        i = 0
        while i < self._length:
            if self._storage[i] == TERMINATOR:
                lines.append(bytes(self._storage[:i]))
                remaining = self._length - i - 1
                self._storage[:remaining] = self._storage[i + 1 : self._length]
                self._length = remaining
                i = 0
            else:
                i += 1
        return lines


def parse_line(line: bytes) -> Optional[Tuple[MeasurementKind, float]]:
    """
    Validate one device line and return ``(kind, value)``.

    Returns ``None`` for the blank line left behind by a ``\\r\\n`` pair and
    raises :class:`LineParseError` for anything malformed. No timestamp is
    taken here; the caller stamps the sample.
    """
    if not line or line == b"\r":
        return None
    if any(byte > 127 for byte in line):
        raise LineParseError(ParseErrorKind.NON_ASCII, line)
    if len(line) < 4:
        raise LineParseError(ParseErrorKind.TOO_SHORT, line)
    try:
        kind = MeasurementKind.from_code(line[0])
    except ValueError:
        raise LineParseError(ParseErrorKind.UNKNOWN_MEASUREMENT, line) from None
    if line[1] != DELIMITER:
        raise LineParseError(ParseErrorKind.MISSING_DELIMITER, line)
    if line[-1] != CARRIAGE_RETURN:
        raise LineParseError(ParseErrorKind.MISSING_TERMINATOR, line)
    body = line[2:-1]
    if _NUMBER_RE.fullmatch(body) is None:
        raise LineParseError(ParseErrorKind.INVALID_NUMBER, line)
    return kind, float(body.decode("ascii"))


class LineDecoder:
    """
    Streaming decoder: raw chunks in, timestamped samples out.
    Keeps per-error counters so the reader can report them.
    """

    def __init__(
        self,
        capacity: int = FRAME_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        self.buffer = FrameBuffer(capacity)
        self._clock = clock
        self._log = logging.getLogger(__name__)
        self._stats: Dict[str, int] = {"lines": 0, "samples": 0, "overflows": 0, "discarded": 0}
        for kind in ParseErrorKind:
            self._stats[kind.value] = 0

    def feed(self, chunk: bytes) -> List[Sample]:
        try:
            lines = self.buffer.append(chunk)
        except FrameOverflowError as exc:
            self._stats["overflows"] += 1
            # lines completed before the overflow are still valid
            exc.samples = self._decode(exc.lines)
            raise
        return self._decode(lines)

    def _decode(self, lines: List[bytes]) -> List[Sample]:
        samples: List[Sample] = []
        for line in lines:
            self._stats["lines"] += 1
            try:
                parsed = parse_line(line)
            except LineParseError as exc:
                self._stats[exc.kind.value] += 1
                self._log.warning("Could not parse line: %s (%r)", exc.kind.value, exc.line)
                continue
            if parsed is None:
                continue
            kind, value = parsed
            samples.append(Sample(kind=kind, timestamp=self._clock(), value=value))
            self._stats["samples"] += 1
        return samples

    def discard(self) -> int:
        """Drop a partial line; returns the number of bytes thrown away."""
        dropped = self.buffer.length
        if dropped:
            self._stats["discarded"] += 1
        self.buffer.reset()
        return dropped

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def reset(self) -> None:
        self.buffer.reset()
