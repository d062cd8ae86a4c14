"""HTTP transport for the store-locator API and request counters."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from . import config

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    pass


class TransportInitError(RuntimeError):
    pass


@dataclass
class RequestMetrics:
    requests_sent: int = 0
    requests_failed: int = 0

    def inc_sent(self) -> None:
        self.requests_sent += 1

    def inc_failed(self) -> None:
        self.requests_failed += 1


class HttpTransport:
    """Direct requests.Session transport.

    Exactly one POST per call; retries belong to the sweep. The remote
    service may reject requests without a browser origin, in which case use
    the browser transport instead.
    """

    def __init__(
        self,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        user_agent: str = config.USER_AGENT,
        metrics: Optional[RequestMetrics] = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.metrics = metrics
        self.session: Optional[requests.Session] = None

    def open(self) -> None:
        if self.session is not None:
            return
        try:
            session = requests.Session()
            session.headers.update({"User-Agent": self.user_agent})
        except Exception as exc:
            raise TransportInitError(f"Could not create HTTP session: {exc}") from exc
        self.session = session

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None

    def post_json(self, url: str, payload: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        if self.session is None:
            raise TransportError("HTTP transport is not open")
        if self.metrics is not None:
            self.metrics.inc_sent()
        try:
            resp = self.session.post(url, json=payload, headers=headers or {}, timeout=self.timeout)
        except requests.RequestException as exc:
            self._failed()
            raise TransportError(f"Request to {url} failed: {exc}") from exc

        status = resp.status_code
        if status < 200 or status >= 300:
            self._failed()
            logger.warning("HTTP %s from %s", status, url)
            raise TransportError(f"HTTP {status}")
        try:
            return resp.json()
        except ValueError as exc:
            self._failed()
            logger.error("Non-JSON response from %s", url)
            raise TransportError("Response body is not JSON") from exc

    def _failed(self) -> None:
        if self.metrics is not None:
            self.metrics.inc_failed()
