"""Exception hierarchy shared by the reader, aggregator and config layers."""
from __future__ import annotations

import enum
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .frames import Sample


class ParseErrorKind(str, enum.Enum):
    NON_ASCII = "non_ascii"
    TOO_SHORT = "too_short"
    UNKNOWN_MEASUREMENT = "unknown_measurement"
    MISSING_DELIMITER = "missing_delimiter"
    MISSING_TERMINATOR = "missing_terminator"
    INVALID_NUMBER = "invalid_number"


class SupplyBridgeError(Exception):
    """Base class for bridge errors."""


class LineParseError(SupplyBridgeError):
    def __init__(self, kind: ParseErrorKind, line: bytes = b""):
        super().__init__(f"{kind.value}: {line!r}")
        self.kind = kind
        self.line = line


class FramingError(SupplyBridgeError):
    """The device stream can no longer be trusted; the connection must be reopened."""


class FrameOverflowError(FramingError):
    def __init__(self, message: str, lines: Optional[List[bytes]] = None):
        super().__init__(message)
        self.lines: List[bytes] = list(lines or [])
        # decoded from ``lines`` by the decoder that caught the overflow
        self.samples: List["Sample"] = []


class FrameStallError(FramingError):
    pass


class ChannelClosedError(SupplyBridgeError):
    """Raised when the consumer side of the sample channel is gone."""


class ConfigError(SupplyBridgeError, ValueError):
    pass
