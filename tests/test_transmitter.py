from __future__ import annotations

import httpx

from supplybridge.config import LabelSet, parse_labels
from supplybridge.frames import MeasurementKind, Sample
from supplybridge.transmitter import CONTENT_TYPE, Transmitter, render_payload

URL = "http://metrics.test/api/v1/import/prometheus"


def make_transmitter(handler) -> Transmitter:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return Transmitter(URL, timeout=1.0, client=client)


def test_render_payload_with_labels() -> None:
    window = {
        MeasurementKind.POWER: [Sample(MeasurementKind.POWER, 1700000000.1234, 1.5)],
        MeasurementKind.VOLTAGE: [Sample(MeasurementKind.VOLTAGE, 1700000001.0, 12.0)],
    }
    labels = parse_labels(["foo=bar", "baz=qux"])
    payload = render_payload(window, labels)
    assert payload == (
        'supply_consumed_power{foo="bar",baz="qux"} 1.50000000 1700000000.123\n'
        'supply_voltage{foo="bar",baz="qux"} 12.00000000 1700000001.000\n'
    )
    for line in payload.splitlines():
        assert '{foo="bar",baz="qux"} ' in line


def test_render_payload_without_labels_has_no_braces() -> None:
    window = {MeasurementKind.CURRENT: [Sample(MeasurementKind.CURRENT, 10.0, 0.25)]}
    payload = render_payload(window, LabelSet())
    assert payload == "supply_current 0.25000000 10.000\n"
    assert "{" not in payload


def test_render_payload_empty_window() -> None:
    assert render_payload({}, LabelSet()) == ""


def test_label_values_are_escaped() -> None:
    labels = parse_labels(['site=lab "A"'])
    assert labels.render() == '{site="lab \\"A\\""}'


def test_send_posts_payload_with_content_type() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    transmitter = make_transmitter(handler)
    assert transmitter.send("supply_current 1.00000000 1.000\n") is True
    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == URL
    assert request.headers["content-type"] == CONTENT_TYPE
    assert request.content == b"supply_current 1.00000000 1.000\n"
    assert transmitter.stats() == {"sent": 1, "failed": 0}


def test_send_reports_non_2xx() -> None:
    transmitter = make_transmitter(lambda request: httpx.Response(500, text="boom"))
    assert transmitter.send("x 1 1\n") is False
    assert transmitter.stats() == {"sent": 0, "failed": 1}


def test_send_survives_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transmitter = make_transmitter(handler)
    assert transmitter.send("x 1 1\n") is False
    assert transmitter.stats()["failed"] == 1
