from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

import httpx

from .config import LabelSet
from .frames import MeasurementKind, Sample

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"


def render_line(sample: Sample, label_block: str = "") -> str:
    return f"{sample.kind.metric}{label_block} {sample.value:.8f} {sample.timestamp:.3f}"


def render_payload(window: Mapping[MeasurementKind, Iterable[Sample]], labels: LabelSet | str = "") -> str:
    """
    Render every sample of a window as one exposition line each.

    ``labels`` is either a :class:`LabelSet` or a block already rendered with
    :meth:`LabelSet.render`. The result is newline-terminated, or empty when
    the window holds no samples.
    """
    label_block = labels.render() if isinstance(labels, LabelSet) else labels
    lines: List[str] = []
    for samples in window.values():
        lines.extend(render_line(sample, label_block) for sample in samples)
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


class Transmitter:
    """
    Best-effort HTTP delivery of a rendered payload.

    One POST per call. A 2xx status counts as delivered; anything else,
    including transport failures, is logged and reported as ``False``.
    There is no retry and nothing is kept for the next call.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._timeout = timeout
        self._stats: Dict[str, int] = {"sent": 0, "failed": 0}

    def send(self, payload: str) -> bool:
        try:
            response = self._client.post(
                self.url,
                content=payload.encode("utf-8"),
                headers={"Content-Type": CONTENT_TYPE},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            self._stats["failed"] += 1
            logger.warning("Failed to send metrics to %s: %s", self.url, exc)
            return False

        if response.is_success:
            self._stats["sent"] += 1
            logger.debug("Sent %d bytes to %s (HTTP %d)", len(payload), self.url, response.status_code)
            return True

        self._stats["failed"] += 1
        logger.warning(
            "Metric server rejected batch (HTTP %d): %s",
            response.status_code,
            response.text[:200],
        )
        return False

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
