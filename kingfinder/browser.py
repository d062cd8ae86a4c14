"""Browser-mediated transport.

The store-locator API has been observed to reject requests that do not come
from a page on the chain's own site. This transport opens the locator page in
headless Chromium and issues every request with ``fetch`` from inside it.
"""
from __future__ import annotations

import json
import logging
from contextlib import ExitStack
from typing import Any, Callable, Dict, List, Optional

from . import config
from .http import RequestMetrics, TransportError, TransportInitError

logger = logging.getLogger(__name__)

LAUNCH_ARGS: List[str] = ["--no-sandbox", "--disable-setuid-sandbox"]

_FETCH_SCRIPT = """
async ({ url, headers, body }) => {
  try {
    const response = await fetch(url, { method: 'POST', headers, body });
    const text = await response.text();
    return { status: response.status, ok: response.ok, text };
  } catch (error) {
    return { error: String(error && error.message ? error.message : error) };
  }
}
"""


class BrowserTransport:
    def __init__(
        self,
        page_url: str = config.STORE_LOCATOR_URL,
        headed: bool = False,
        slowmo_ms: int = 0,
        metrics: Optional[RequestMetrics] = None,
        sync_playwright_factory: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.page_url = page_url
        self.headed = bool(headed)
        self.slowmo_ms = max(0, int(slowmo_ms))
        self.metrics = metrics
        self._factory = sync_playwright_factory
        self._stack: Optional[ExitStack] = None
        self._browser = None
        self.page = None

    def open(self) -> None:
        if self.page is not None:
            return
        factory = self._factory
        if factory is None:
            try:
                from playwright.sync_api import sync_playwright
            except ImportError as exc:
                raise TransportInitError(f"Playwright is not installed: {exc}") from exc
            factory = sync_playwright

        stack = ExitStack()
        try:
            playwright = stack.enter_context(factory())
            browser = playwright.chromium.launch(
                headless=not self.headed, slow_mo=self.slowmo_ms, args=list(LAUNCH_ARGS)
            )
            stack.callback(browser.close)
            context = browser.new_context(
                user_agent=config.USER_AGENT,
                viewport=dict(config.BROWSER_VIEWPORT),
                locale=config.BROWSER_LOCALE,
                timezone_id=config.BROWSER_TIMEZONE,
            )
            page = context.new_page()
            logger.info("Loading store locator: %s", self.page_url)
            page.goto(self.page_url, wait_until="domcontentloaded", timeout=config.BROWSER_NAV_TIMEOUT_MS)
            _accept_cookies(page)
            page.wait_for_timeout(config.PAGE_SETTLE_MS)
        except TransportInitError:
            stack.close()
            raise
        except Exception as exc:
            stack.close()
            raise TransportInitError(f"Browser session could not be created: {exc}") from exc

        self._stack = stack
        self._browser = browser
        self.page = page
        logger.info("Browser ready")

    def close(self) -> None:
        if self._stack is not None:
            self._stack.close()
        self._stack = None
        self._browser = None
        self.page = None

    def post_json(self, url: str, payload: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        if self.page is None:
            raise TransportError("Browser transport is not open")
        if self.metrics is not None:
            self.metrics.inc_sent()
        try:
            result = self.page.evaluate(
                _FETCH_SCRIPT,
                {"url": url, "headers": headers or {}, "body": json.dumps(payload)},
            )
        except Exception as exc:
            self._failed()
            raise TransportError(f"In-page fetch failed: {exc}") from exc

        result = result or {}
        if result.get("error"):
            self._failed()
            raise TransportError(str(result["error"]))
        if not result.get("ok"):
            self._failed()
            raise TransportError(f"HTTP {result.get('status')}")
        try:
            return json.loads(result.get("text") or "")
        except ValueError as exc:
            self._failed()
            raise TransportError("Response body is not JSON") from exc

    def _failed(self) -> None:
        if self.metrics is not None:
            self.metrics.inc_failed()


def _accept_cookies(page) -> bool:
    try:
        button = page.locator(config.COOKIE_BUTTON_SELECTOR).first
        if not button.is_visible(timeout=config.COOKIE_BUTTON_TIMEOUT_MS):
            return False
        button.click()
        page.wait_for_timeout(2000)
        return True
    except Exception as exc:
        logger.debug("Cookie banner not handled: %s", exc)
        return False
