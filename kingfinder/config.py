"""Project configuration.

Loads user-defined sweep parameters from sweep_config.json when available,
falling back to the defaults below. Keep API request shapes centralized here.

The grid steps, radius and pacing were tuned against the German store
locator; they are configuration, not derived constants.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- API endpoints ---

GRAPHQL_URL = "https://euc1-prod-bk.rbictg.com/graphql"
STORE_LOCATOR_URL = "https://www.burgerking.de/store-locator"

# --- Request shape ---

OPERATION_NAME = "GetRestaurants"
SEARCH_FILTER = "NEARBY"
STORE_STATUS = "OPEN"
PAGE_SIZE = 100
MARKET_LANGUAGE = "de"
MARKET_REGION = "DE"

# --- Grid (Germany bounding box, ~50 km windows) ---

_DEFAULT_BOUNDS: Dict[str, float] = {"lat_min": 47.3, "lat_max": 55.0, "lng_min": 5.9, "lng_max": 15.0}

SEARCH_BOUNDS: Dict[str, float] = dict(_DEFAULT_BOUNDS)
LAT_STEP = 0.5
LNG_STEP = 0.7
SEARCH_RADIUS_M = 50_000
GRID_PRECISION = 2

# --- Sweep ---

REQUEST_DELAY_SECONDS = 0.8
CHECKPOINT_EVERY = 20
WINDOW_RETRIES = 0
RETRY_BACKOFF_SECONDS = 2.0
PROGRESS_LOG_EVERY = 25

# --- HTTP ---

HTTP_TIMEOUT_SECONDS = 30
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# --- Browser transport ---

BROWSER_VIEWPORT: Dict[str, int] = {"width": 1920, "height": 1080}
BROWSER_LOCALE = "de-DE"
BROWSER_TIMEZONE = "Europe/Berlin"
BROWSER_NAV_TIMEOUT_MS = 60_000
COOKIE_BUTTON_SELECTOR = 'button:has-text("Alle akzeptieren")'
COOKIE_BUTTON_TIMEOUT_MS = 5_000
PAGE_SETTLE_MS = 3_000

# --- Outputs ---

OUTPUT_DIR = "output"
SNAPSHOT_FILENAME = "progress.json"
STATE_FILENAME = "sweep_state.json"
SUMMARY_FILENAME = "sweep_summary.txt"
JSON_EXPORT_FILENAME = "burger-king-stores-germany.json"
CSV_EXPORT_FILENAME = "burger-king-stores-germany.csv"

# --- Probe (single window sanity check) ---

PROBE_LAT = 52.52
PROBE_LNG = 13.40
PROBE_PAGE_SIZE = 10

_FLOAT_KEYS = {
    "lat_step": "LAT_STEP",
    "lng_step": "LNG_STEP",
    "request_delay_seconds": "REQUEST_DELAY_SECONDS",
    "retry_backoff_seconds": "RETRY_BACKOFF_SECONDS",
}
_INT_KEYS = {
    "search_radius_m": "SEARCH_RADIUS_M",
    "page_size": "PAGE_SIZE",
    "checkpoint_every": "CHECKPOINT_EVERY",
    "window_retries": "WINDOW_RETRIES",
    "http_timeout_seconds": "HTTP_TIMEOUT_SECONDS",
}
_STR_KEYS = {
    "graphql_url": "GRAPHQL_URL",
    "store_locator_url": "STORE_LOCATOR_URL",
    "market_language": "MARKET_LANGUAGE",
    "market_region": "MARKET_REGION",
    "output_dir": "OUTPUT_DIR",
    "json_export_filename": "JSON_EXPORT_FILENAME",
    "csv_export_filename": "CSV_EXPORT_FILENAME",
}


def request_headers() -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "x-ui-language": MARKET_LANGUAGE,
        "x-ui-region": MARKET_REGION,
    }


def load_sweep_config(path: Optional[str] = None) -> bool:
    """Load sweep configuration from a JSON file.

    Updates module-level globals with values from the config file.
    Returns True if config was loaded, False if file not found.
    """
    if path is None:
        path = str(_REPO_ROOT / "sweep_config.json")

    config_path = Path(path)
    if not config_path.exists():
        return False

    with open(config_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must hold a JSON object")

    globals_ref = globals()

    bounds = data.get("bounds")
    if bounds and not isinstance(bounds, dict):
        raise ValueError("bounds must be an object")
    if bounds:
        merged = dict(globals_ref["SEARCH_BOUNDS"])
        for key in ("lat_min", "lat_max", "lng_min", "lng_max"):
            if bounds.get(key) is not None:
                merged[key] = float(bounds[key])
        globals_ref["SEARCH_BOUNDS"] = merged

    for key, name in _FLOAT_KEYS.items():
        if data.get(key) is not None:
            globals_ref[name] = float(data[key])
    for key, name in _INT_KEYS.items():
        if data.get(key) is not None:
            globals_ref[name] = int(data[key])
    for key, name in _STR_KEYS.items():
        if data.get(key):
            globals_ref[name] = str(data[key])

    return True
