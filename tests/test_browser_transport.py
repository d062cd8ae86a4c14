import json

import pytest

from kingfinder import config
from kingfinder.browser import BrowserTransport
from kingfinder.http import RequestMetrics, TransportError, TransportInitError


class _FakeLocator:
    def __init__(self, visible: bool) -> None:
        self.visible = visible
        self.clicks = 0

    @property
    def first(self):
        return self

    def is_visible(self, timeout: int) -> bool:
        return self.visible

    def click(self) -> None:
        self.clicks += 1


class _FakePage:
    def __init__(self, results=None, cookie_visible: bool = True, goto_error=None) -> None:
        self.results = list(results or [])
        self.cookie = _FakeLocator(cookie_visible)
        self.goto_error = goto_error
        self.evaluated: list[dict] = []
        self.waits: list[int] = []

    def goto(self, url: str, wait_until: str, timeout: int) -> None:
        if self.goto_error is not None:
            raise self.goto_error
        self.last_goto = (url, wait_until, timeout)

    def locator(self, selector: str):
        self.last_selector = selector
        return self.cookie

    def wait_for_timeout(self, ms: int) -> None:
        self.waits.append(ms)

    def evaluate(self, script: str, arg: dict):
        self.evaluated.append(arg)
        return self.results.pop(0)


class _FakeContext:
    def __init__(self, page: _FakePage) -> None:
        self._page = page

    def new_page(self) -> _FakePage:
        return self._page


class _FakeBrowser:
    def __init__(self, page: _FakePage) -> None:
        self._page = page
        self.context_kwargs: dict[str, object] = {}
        self.closed = False

    def new_context(self, **kwargs):
        self.context_kwargs = dict(kwargs)
        return _FakeContext(self._page)

    def close(self) -> None:
        self.closed = True


class _FakeChromium:
    def __init__(self, browser: _FakeBrowser) -> None:
        self.browser = browser
        self.launch_kwargs: dict[str, object] = {}

    def launch(self, **kwargs):
        self.launch_kwargs = dict(kwargs)
        return self.browser


class _FakePlaywright:
    def __init__(self, chromium: _FakeChromium) -> None:
        self.chromium = chromium


class _FakeSyncPlaywright:
    def __init__(self, playwright: _FakePlaywright) -> None:
        self.playwright = playwright
        self.exited = False

    def __enter__(self):
        return self.playwright

    def __exit__(self, exc_type, exc, tb):
        self.exited = True
        return False


def _make_transport(page: _FakePage, **kwargs):
    browser = _FakeBrowser(page)
    chromium = _FakeChromium(browser)
    sync_pw = _FakeSyncPlaywright(_FakePlaywright(chromium))
    transport = BrowserTransport(sync_playwright_factory=lambda: sync_pw, **kwargs)
    return transport, browser, chromium, sync_pw


def _ok(payload):
    return {"status": 200, "ok": True, "text": json.dumps(payload)}


def test_open_loads_locator_page_and_accepts_cookies():
    page = _FakePage()
    transport, browser, chromium, _ = _make_transport(page, headed=True, slowmo_ms=250)

    transport.open()

    assert chromium.launch_kwargs["headless"] is False
    assert chromium.launch_kwargs["slow_mo"] == 250
    assert "--no-sandbox" in chromium.launch_kwargs["args"]
    assert browser.context_kwargs["locale"] == "de-DE"
    assert browser.context_kwargs["timezone_id"] == "Europe/Berlin"
    assert page.last_goto == (config.STORE_LOCATOR_URL, "domcontentloaded", config.BROWSER_NAV_TIMEOUT_MS)
    assert page.last_selector == config.COOKIE_BUTTON_SELECTOR
    assert page.cookie.clicks == 1
    assert page.waits[-1] == config.PAGE_SETTLE_MS


def test_open_without_cookie_banner_is_fine():
    page = _FakePage(cookie_visible=False)
    transport, _, chromium, _ = _make_transport(page)

    transport.open()

    assert chromium.launch_kwargs["headless"] is True
    assert page.cookie.clicks == 0
    assert transport.page is page


def test_open_failure_becomes_init_error_and_releases_browser():
    page = _FakePage(goto_error=RuntimeError("net::ERR_NAME_NOT_RESOLVED"))
    transport, browser, _, sync_pw = _make_transport(page)

    with pytest.raises(TransportInitError, match="ERR_NAME_NOT_RESOLVED"):
        transport.open()

    assert browser.closed
    assert sync_pw.exited
    assert transport.page is None


def test_post_json_runs_fetch_inside_page():
    payload = [{"data": {"restaurants": {"totalCount": 0, "nodes": []}}}]
    page = _FakePage(results=[_ok(payload)])
    metrics = RequestMetrics()
    transport, _, _, _ = _make_transport(page, metrics=metrics)
    transport.open()

    body = [{"operationName": "GetRestaurants"}]
    result = transport.post_json(config.GRAPHQL_URL, body, {"x-ui-region": "DE"})

    assert result == payload
    sent = page.evaluated[0]
    assert sent["url"] == config.GRAPHQL_URL
    assert sent["headers"] == {"x-ui-region": "DE"}
    assert json.loads(sent["body"]) == body
    assert metrics.requests_sent == 1
    assert metrics.requests_failed == 0


def test_post_json_failures_raise_transport_error():
    page = _FakePage(
        results=[
            {"status": 403, "ok": False, "text": "Forbidden"},
            {"error": "Failed to fetch"},
            {"status": 200, "ok": True, "text": "<html>"},
        ]
    )
    metrics = RequestMetrics()
    transport, _, _, _ = _make_transport(page, metrics=metrics)
    transport.open()

    with pytest.raises(TransportError, match="HTTP 403"):
        transport.post_json(config.GRAPHQL_URL, [])
    with pytest.raises(TransportError, match="Failed to fetch"):
        transport.post_json(config.GRAPHQL_URL, [])
    with pytest.raises(TransportError, match="not JSON"):
        transport.post_json(config.GRAPHQL_URL, [])
    assert metrics.requests_failed == 3


def test_close_releases_session_and_post_requires_open():
    page = _FakePage()
    transport, browser, _, sync_pw = _make_transport(page)
    transport.open()
    transport.close()

    assert browser.closed
    assert sync_pw.exited
    with pytest.raises(TransportError):
        transport.post_json(config.GRAPHQL_URL, [])
