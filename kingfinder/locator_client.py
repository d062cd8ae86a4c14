"""Store-locator GraphQL client and response parsing."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from . import config
from .geo import Coordinate
from .http import TransportError

logger = logging.getLogger(__name__)

RESTAURANTS_QUERY = """
query GetRestaurants($input: RestaurantsInput) {
  restaurants(input: $input) {
    totalCount
    nodes {
      _id
      storeId
      number
      name
      latitude
      longitude
      phoneNumber
      email
      physicalAddress {
        address1
        address2
        city
        country
        postalCode
        stateProvince
      }
      hasDelivery
      hasDineIn
      hasDriveThru
      hasMobileOrdering
      hasWifi
      hasPlayground
      hasParking
      franchiseGroupName
    }
  }
}
"""


class QueryError(RuntimeError):
    pass


class Transport(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    def post_json(self, url: str, payload: Any, headers: Optional[Dict[str, str]] = None) -> Any: ...


@dataclass(frozen=True)
class SearchWindow:
    coordinate: Coordinate
    radius_m: float


@dataclass(frozen=True)
class FetchResult:
    window: SearchWindow
    stores: List[Dict[str, Any]] = field(default_factory=list)
    total_count: Optional[int] = None
    error: Optional[QueryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def truncated(self) -> bool:
        return self.total_count is not None and self.total_count > len(self.stores)


class LocatorClient:
    def __init__(
        self,
        transport: Transport,
        page_size: int = config.PAGE_SIZE,
        endpoint: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.transport = transport
        self.page_size = int(page_size)
        self.endpoint = endpoint or config.GRAPHQL_URL
        self.headers = dict(headers) if headers is not None else config.request_headers()

    def open(self) -> None:
        self.transport.open()

    def close(self) -> None:
        self.transport.close()

    def fetch(self, window: SearchWindow) -> FetchResult:
        """One request for one window. Failures come back in ``error``."""
        body = build_restaurants_request(window, self.page_size)
        try:
            payload = self.transport.post_json(self.endpoint, body, self.headers)
            nodes, total_count = parse_restaurants_response(payload)
        except TransportError as exc:
            return FetchResult(window=window, error=QueryError(str(exc)))
        except QueryError as exc:
            return FetchResult(window=window, error=exc)

        if len(nodes) > self.page_size:
            nodes = nodes[: self.page_size]
        result = FetchResult(window=window, stores=nodes, total_count=total_count)
        if result.truncated:
            logger.info(
                "Window truncated: lat=%s lng=%s total_count=%s returned=%s",
                window.coordinate.lat,
                window.coordinate.lng,
                total_count,
                len(nodes),
            )
        return result


def build_restaurants_request(window: SearchWindow, page_size: int = config.PAGE_SIZE) -> List[Dict[str, Any]]:
    variables = {
        "input": {
            "filter": config.SEARCH_FILTER,
            "coordinates": {
                "userLat": window.coordinate.lat,
                "userLng": window.coordinate.lng,
                "searchRadius": window.radius_m,
            },
            "first": int(page_size),
            "status": config.STORE_STATUS,
        }
    }
    return [
        {
            "operationName": config.OPERATION_NAME,
            "variables": variables,
            "query": RESTAURANTS_QUERY,
        }
    ]


def _error_message(errors: Any) -> str:
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
    return str(errors)


def parse_restaurants_response(payload: Any) -> Tuple[List[Dict[str, Any]], Optional[int]]:
    """Return (nodes, totalCount) from a batched GraphQL response."""
    if isinstance(payload, dict) and payload.get("errors"):
        raise QueryError(f"API error: {_error_message(payload['errors'])}")
    if isinstance(payload, list):
        if not payload:
            raise QueryError("Empty response")
        payload = payload[0]
    if not isinstance(payload, dict):
        raise QueryError("Malformed response")
    if payload.get("errors"):
        raise QueryError(f"API error: {_error_message(payload['errors'])}")

    data = payload.get("data")
    restaurants = data.get("restaurants") if isinstance(data, dict) else None
    if not isinstance(restaurants, dict):
        raise QueryError("Response has no data.restaurants")
    nodes = restaurants.get("nodes")
    if nodes is None:
        nodes = []
    if not isinstance(nodes, list):
        raise QueryError("restaurants.nodes is not a list")

    total_count = restaurants.get("totalCount")
    try:
        total_count = int(total_count) if total_count is not None else None
    except (TypeError, ValueError):
        total_count = None
    return [n for n in nodes if isinstance(n, dict)], total_count
