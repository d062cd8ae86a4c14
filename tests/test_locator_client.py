import json
from pathlib import Path

import pytest
import requests

from kingfinder import config
from kingfinder.geo import Coordinate
from kingfinder.http import HttpTransport, RequestMetrics, TransportError
from kingfinder.locator_client import (
    LocatorClient,
    QueryError,
    SearchWindow,
    build_restaurants_request,
    parse_restaurants_response,
)


def _load_fixture(name):
    path = Path(__file__).parent / "fixtures" / name
    return json.loads(path.read_text(encoding="utf-8"))


BERLIN = SearchWindow(coordinate=Coordinate(lat=52.52, lng=13.4), radius_m=50000)


class FakeResponse:
    def __init__(self, payload=None, status_code=200, text=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = {}
        self.text = text

    def json(self):
        if self.text is not None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.headers = {}

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        pass


class FakeTransport:
    def __init__(self, payloads):
        self.payloads = list(payloads)
        self.bodies = []

    def open(self):
        pass

    def close(self):
        pass

    def post_json(self, url, payload, headers=None):
        self.bodies.append(payload)
        item = self.payloads.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def make_http_transport(responses, metrics=None):
    transport = HttpTransport(timeout=1, metrics=metrics)
    transport.session = FakeSession(responses)
    return transport


def _nodes(count):
    return [{"storeId": str(i), "name": f"BK {i}"} for i in range(count)]


def _payload(nodes, total_count):
    return [{"data": {"restaurants": {"totalCount": total_count, "nodes": nodes}}}]


def test_request_body_is_a_batch_of_one_nearby_query():
    body = build_restaurants_request(BERLIN, page_size=100)

    assert isinstance(body, list) and len(body) == 1
    op = body[0]
    assert op["operationName"] == "GetRestaurants"
    assert "restaurants(input: $input)" in op["query"]
    assert op["variables"]["input"] == {
        "filter": "NEARBY",
        "coordinates": {"userLat": 52.52, "userLng": 13.4, "searchRadius": 50000},
        "first": 100,
        "status": "OPEN",
    }


def test_parse_fixture_response():
    nodes, total_count = parse_restaurants_response(_load_fixture("restaurants_berlin.json"))
    assert total_count == 2
    assert [n["storeId"] for n in nodes] == ["10042", "10077"]
    assert nodes[0]["physicalAddress"]["city"] == "Berlin"


def test_parse_accepts_unbatched_object_and_missing_nodes():
    nodes, total_count = parse_restaurants_response({"data": {"restaurants": {"totalCount": 0}}})
    assert nodes == []
    assert total_count == 0


@pytest.mark.parametrize(
    "payload",
    [
        [],
        "oops",
        [{"data": None}],
        [{"data": {"restaurants": {"nodes": "x"}}}],
    ],
)
def test_parse_rejects_malformed_payloads(payload):
    with pytest.raises(QueryError):
        parse_restaurants_response(payload)


def test_parse_raises_on_graphql_errors():
    with pytest.raises(QueryError) as excinfo:
        parse_restaurants_response(_load_fixture("graphql_error.json"))
    assert "invalid value" in str(excinfo.value)


def test_fetch_returns_stores_and_total():
    transport = FakeTransport([_load_fixture("restaurants_berlin.json")])
    client = LocatorClient(transport, page_size=100)

    result = client.fetch(BERLIN)

    assert result.ok
    assert not result.truncated
    assert result.total_count == 2
    assert len(result.stores) == 2
    assert transport.bodies[0][0]["variables"]["input"]["first"] == 100


def test_fetch_caps_results_at_page_size_and_flags_truncation():
    transport = FakeTransport([_payload(_nodes(150), 150)])
    client = LocatorClient(transport, page_size=100)

    result = client.fetch(BERLIN)

    assert result.ok
    assert result.error is None
    assert len(result.stores) == 100
    assert result.total_count == 150
    assert result.truncated


def test_fetch_never_raises_on_transport_or_query_errors():
    transport = FakeTransport(
        [TransportError("HTTP 503"), _load_fixture("graphql_error.json"), [{"data": {}}]]
    )
    client = LocatorClient(transport)

    results = [client.fetch(BERLIN) for _ in range(3)]

    assert [r.ok for r in results] == [False, False, False]
    assert all(isinstance(r.error, QueryError) for r in results)
    assert "HTTP 503" in str(results[0].error)
    assert results[0].stores == []


def test_page_size_must_be_positive():
    with pytest.raises(ValueError):
        LocatorClient(FakeTransport([]), page_size=0)


def test_http_transport_posts_json_with_headers():
    metrics = RequestMetrics()
    transport = make_http_transport([FakeResponse(_payload([], 0))], metrics=metrics)
    client = LocatorClient(transport)

    result = client.fetch(BERLIN)

    assert result.ok
    call = transport.session.calls[0]
    assert call["url"] == config.GRAPHQL_URL
    assert call["json"][0]["operationName"] == "GetRestaurants"
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["headers"]["x-ui-region"] == "DE"
    assert call["timeout"] == 1
    assert metrics.requests_sent == 1
    assert metrics.requests_failed == 0


def test_http_transport_errors_count_as_failures():
    metrics = RequestMetrics()
    transport = make_http_transport(
        [
            FakeResponse(status_code=403),
            FakeResponse(text="<html>blocked</html>"),
            requests.ConnectionError("connection reset"),
        ],
        metrics=metrics,
    )

    with pytest.raises(TransportError, match="HTTP 403"):
        transport.post_json(config.GRAPHQL_URL, [])
    with pytest.raises(TransportError, match="not JSON"):
        transport.post_json(config.GRAPHQL_URL, [])
    with pytest.raises(TransportError, match="connection reset"):
        transport.post_json(config.GRAPHQL_URL, [])

    assert metrics.requests_sent == 3
    assert metrics.requests_failed == 3


def test_http_transport_requires_open():
    transport = HttpTransport()
    with pytest.raises(TransportError):
        transport.post_json(config.GRAPHQL_URL, [])

    transport.open()
    assert transport.session is not None
    assert transport.session.headers["User-Agent"] == config.USER_AGENT
    transport.close()
    assert transport.session is None
