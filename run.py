"""CLI entrypoint."""
from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv as _load_dotenv

from kingfinder import config
from kingfinder.browser import BrowserTransport
from kingfinder.geo import (
    Bounds,
    Coordinate,
    generate_grid,
    max_coverage_gap_km,
    steps_for_radius,
    widest_latitude,
)
from kingfinder.http import HttpTransport, RequestMetrics, TransportInitError
from kingfinder.locator_client import LocatorClient, SearchWindow
from kingfinder.reporting import (
    ExportIOError,
    ensure_dir,
    render_store_sample,
    render_sweep_summary,
    write_stores_csv,
    write_stores_json,
    write_summary,
)
from kingfinder.sweep import SweepController, load_checkpoint

logger = logging.getLogger("kingfinder")

TRANSPORTS = ("browser", "http")


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def default_transport() -> str:
    value = (os.environ.get("KINGFINDER_TRANSPORT") or "").strip().lower()
    return value if value in TRANSPORTS else "browser"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find every open store via the store-locator API")
    parser.add_argument("--config", type=str, default=None, help="Path to sweep_config.json overrides")
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        default=None,
        help="browser (in-page fetch, default) or http (direct requests)",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--out", type=str, default=None, help="Output directory (default: output)")
    parser.add_argument("--json-name", type=str, default=None)
    parser.add_argument("--csv-name", type=str, default=None)
    parser.add_argument("--lat-min", type=float, default=None)
    parser.add_argument("--lat-max", type=float, default=None)
    parser.add_argument("--lng-min", type=float, default=None)
    parser.add_argument("--lng-max", type=float, default=None)
    parser.add_argument("--lat-step", type=float, default=None)
    parser.add_argument("--lng-step", type=float, default=None)
    parser.add_argument(
        "--auto-steps",
        action="store_true",
        help="Derive the widest gap-free steps from the search radius",
    )
    parser.add_argument("--radius-m", type=int, default=None, help="Search radius per window in meters")
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--delay-ms", type=int, default=None, help="Pause between requests")
    parser.add_argument("--checkpoint-every", type=int, default=None)
    parser.add_argument("--retries", type=int, default=None, help="Extra attempts per failed window")
    parser.add_argument("--resume", action="store_true", help="Continue from the last checkpoint")
    parser.add_argument("--sample", type=int, default=5, help="Print N stores after the sweep")
    parser.add_argument(
        "--probe",
        action="store_true",
        help="Query a single window around Berlin and exit",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def resolve_bounds(args: argparse.Namespace) -> Bounds:
    data = dict(config.SEARCH_BOUNDS)
    for key in ("lat_min", "lat_max", "lng_min", "lng_max"):
        value = getattr(args, key)
        if value is not None:
            data[key] = value
    return Bounds.from_dict(data)


def resolve_steps(args: argparse.Namespace, bounds: Bounds, radius_m: float) -> Tuple[float, float]:
    if args.auto_steps:
        return steps_for_radius(radius_m, widest_latitude(bounds), precision=config.GRID_PRECISION)
    lat_step = args.lat_step if args.lat_step is not None else config.LAT_STEP
    lng_step = args.lng_step if args.lng_step is not None else config.LNG_STEP
    return lat_step, lng_step


def build_transport(name: str, headed: bool = False, metrics: Optional[RequestMetrics] = None):
    if name == "http":
        return HttpTransport(timeout=config.HTTP_TIMEOUT_SECONDS, metrics=metrics)
    return BrowserTransport(page_url=config.STORE_LOCATOR_URL, headed=headed, metrics=metrics)


def run_probe(client: LocatorClient) -> int:
    window = SearchWindow(
        coordinate=Coordinate(lat=config.PROBE_LAT, lng=config.PROBE_LNG),
        radius_m=config.SEARCH_RADIUS_M,
    )
    try:
        client.open()
    except TransportInitError as exc:
        print(f"Transport error: {exc}", file=sys.stderr)
        return 1
    try:
        result = client.fetch(window)
    finally:
        client.close()

    if not result.ok:
        print(f"Probe: FAIL ({result.error})")
        return 1
    print(f"Probe: OK total_count={result.total_count} returned={len(result.stores)}")
    if result.stores:
        for line in render_store_sample(result.stores, 1)[1:]:
            print(line)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.config and not config.load_sweep_config(args.config):
            print(f"Config file not found: {args.config}", file=sys.stderr)
            return 1
        if not args.config:
            config.load_sweep_config()
    except (ValueError, TypeError, OSError) as exc:
        print(f"Invalid config: {exc}", file=sys.stderr)
        return 1

    transport_name = args.transport or default_transport()
    radius_m = args.radius_m if args.radius_m is not None else config.SEARCH_RADIUS_M
    page_size = args.page_size if args.page_size is not None else config.PAGE_SIZE
    out_dir = args.out or config.OUTPUT_DIR

    metrics = RequestMetrics()
    transport = build_transport(transport_name, headed=args.headed, metrics=metrics)

    if args.probe:
        return run_probe(LocatorClient(transport, page_size=config.PROBE_PAGE_SIZE))

    try:
        client = LocatorClient(transport, page_size=page_size)
        bounds = resolve_bounds(args)
        lat_step, lng_step = resolve_steps(args, bounds, radius_m)
        grid = generate_grid(bounds, lat_step, lng_step, precision=config.GRID_PRECISION)
        gap_km = max_coverage_gap_km(bounds, lat_step, lng_step, radius_m)
        if gap_km > 0:
            logger.warning(
                "Grid leaves gaps: lat_step=%s lng_step=%s radius_m=%s gap_km=%.1f",
                lat_step,
                lng_step,
                radius_m,
                gap_km,
            )
        logger.info(
            "Grid: points=%s lat_step=%s lng_step=%s radius_m=%s", len(grid), lat_step, lng_step, radius_m
        )

        checkpoint = load_checkpoint(out_dir, grid) if args.resume else None

        delay_ms = args.delay_ms if args.delay_ms is not None else config.REQUEST_DELAY_SECONDS * 1000
        controller = SweepController(
            client,
            grid,
            radius_m=radius_m,
            delay_seconds=delay_ms / 1000.0,
            checkpoint_every=(
                args.checkpoint_every if args.checkpoint_every is not None else config.CHECKPOINT_EVERY
            ),
            output_dir=out_dir,
            window_retries=args.retries if args.retries is not None else config.WINDOW_RETRIES,
            retry_backoff_seconds=config.RETRY_BACKOFF_SECONDS,
            log_every=config.PROGRESS_LOG_EVERY,
            checkpoint=checkpoint,
        )
    except OSError as exc:
        print(f"Checkpoint error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Invalid settings: {exc}", file=sys.stderr)
        return 1

    previous_handler = signal.signal(signal.SIGINT, lambda _sig, _frame: controller.cancel())
    try:
        result = controller.run()
    except TransportInitError as exc:
        print(f"Transport error: {exc}", file=sys.stderr)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    snapshot = result.registry.snapshot()
    json_path = os.path.join(out_dir, args.json_name or config.JSON_EXPORT_FILENAME)
    csv_path = os.path.join(out_dir, args.csv_name or config.CSV_EXPORT_FILENAME)
    summary = result.summary()
    summary["requests_sent"] = metrics.requests_sent
    try:
        ensure_dir(out_dir)
        write_stores_json(json_path, snapshot)
        write_stores_csv(csv_path, snapshot)
        summary_lines = render_sweep_summary(summary)
        write_summary(os.path.join(out_dir, config.SUMMARY_FILENAME), summary_lines)
    except (ExportIOError, OSError) as exc:
        print(f"Export error: {exc}", file=sys.stderr)
        return 1

    if args.sample > 0 and snapshot:
        for line in render_store_sample(snapshot, args.sample):
            print(line)
    for line in summary_lines:
        print(line)
    print(f"Done. Results written to {json_path} and {csv_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
