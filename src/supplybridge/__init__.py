"""
Serial power supply telemetry to OpenMetrics bridge.

A reader thread frames and validates the device's text lines, an aggregator
thread batches the samples into timed windows and POSTs them to a metric
server.
"""

from importlib.metadata import PackageNotFoundError, version

from .aggregator import AggregatorThread, FlushSchedule, Window
from .config import BridgeSettings, LabelSet, load_settings, parse_labels
from .errors import (
    ChannelClosedError,
    ConfigError,
    FrameOverflowError,
    FrameStallError,
    LineParseError,
    ParseErrorKind,
    SupplyBridgeError,
)
from .frames import FrameBuffer, LineDecoder, MeasurementKind, Sample, parse_line
from .reader import DeviceReader, SampleChannel, SerialSettings
from .runner import BridgeHost
from .transmitter import CONTENT_TYPE, Transmitter, render_payload

try:  # pragma: no cover - fallback when package metadata missing
    __version__ = version("supplybridge")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = [
    "__version__",
    "AggregatorThread",
    "FlushSchedule",
    "Window",
    "BridgeSettings",
    "LabelSet",
    "load_settings",
    "parse_labels",
    "ChannelClosedError",
    "ConfigError",
    "FrameOverflowError",
    "FrameStallError",
    "LineParseError",
    "ParseErrorKind",
    "SupplyBridgeError",
    "FrameBuffer",
    "LineDecoder",
    "MeasurementKind",
    "Sample",
    "parse_line",
    "DeviceReader",
    "SampleChannel",
    "SerialSettings",
    "BridgeHost",
    "CONTENT_TYPE",
    "Transmitter",
    "render_payload",
]
