"""Output reporting helpers."""
from __future__ import annotations

import csv
import json
import os
import logging
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, TextIO

CSV_FIELDNAMES: List[str] = [
    "storeId",
    "number",
    "name",
    "latitude",
    "longitude",
    "address1",
    "address2",
    "city",
    "postalCode",
    "country",
    "stateProvince",
    "phoneNumber",
    "email",
    "hasDelivery",
    "hasDineIn",
    "hasDriveThru",
    "hasMobileOrdering",
    "hasWifi",
    "hasPlayground",
    "hasParking",
    "franchiseGroupName",
]
ADDRESS_FIELDS = ("address1", "address2", "city", "postalCode", "country", "stateProvince")
FLAG_FIELDS = (
    "hasDelivery",
    "hasDineIn",
    "hasDriveThru",
    "hasMobileOrdering",
    "hasWifi",
    "hasPlayground",
    "hasParking",
)


class ExportIOError(RuntimeError):
    pass


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


@contextmanager
def _export_errors(path: str) -> Iterator[None]:
    try:
        yield
    except OSError as exc:
        raise ExportIOError(f"Could not write {path}: {exc}") from exc


def atomic_write_text(path: str, text: str) -> None:
    with _export_errors(path):
        with atomic_writer(path, mode="w", encoding="utf-8") as f:
            f.write(text)


def write_json(path: str, payload: Any) -> None:
    with _export_errors(path):
        with atomic_writer(path, mode="w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)


def load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# Exporters

def to_records(snapshot: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten store documents into rows keyed by CSV_FIELDNAMES.

    Missing scalars become "" and missing flags become False.
    """
    rows: List[Dict[str, Any]] = []
    for store in snapshot:
        address = store.get("physicalAddress")
        if not isinstance(address, dict):
            address = {}
        row: Dict[str, Any] = {}
        for name in CSV_FIELDNAMES:
            if name in FLAG_FIELDS:
                row[name] = bool(store.get(name))
                continue
            value = address.get(name) if name in ADDRESS_FIELDS else store.get(name)
            row[name] = "" if value is None else value
        rows.append(row)
    return rows


def _csv_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def write_stores_csv(path: str, snapshot: Iterable[Dict[str, Any]]) -> int:
    rows = to_records(snapshot)
    with _export_errors(path):
        with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDNAMES, extrasaction="ignore")
            writer.writeheader()
            for row in rows:
                writer.writerow({k: _csv_value(v) for k, v in row.items()})
    return len(rows)


def write_stores_json(path: str, snapshot: Iterable[Dict[str, Any]]) -> int:
    data = list(snapshot)
    write_json(path, data)
    return len(data)


def write_checkpoint(
    snapshot_path: str,
    state_path: str,
    snapshot: Iterable[Dict[str, Any]],
    state: Dict[str, Any],
) -> None:
    dir_path = os.path.dirname(snapshot_path) or "."
    with _export_errors(dir_path):
        ensure_dir(dir_path)
    # Snapshot first: a state file never points past the stores on disk.
    write_json(snapshot_path, list(snapshot))
    write_json(state_path, dict(state, timestamp=utc_now_iso()))


def write_summary(path: str, summary_lines: List[str]) -> None:
    atomic_write_text(path, "\n".join(summary_lines) + "\n")


def render_sweep_summary(summary: Dict[str, Any]) -> List[str]:
    lines = []
    lines.append(f"Status: {summary.get('status', '')}")
    lines.append(f"Total unique stores: {summary.get('unique_stores', 0)}")
    lines.append(
        "Windows: processed={processed}/{total}, errored={errored}, truncated={truncated}".format(
            processed=summary.get("windows_processed", 0),
            total=summary.get("windows_total", 0),
            errored=summary.get("windows_failed", 0),
            truncated=summary.get("truncated_windows", 0),
        )
    )
    lines.append(f"Records discarded (no identity): {summary.get('discarded_records', 0)}")
    lines.append(f"Duplicate sightings: {summary.get('duplicates', 0)}")
    lines.append(f"Cancelled: {summary.get('cancelled', False)}")
    lines.append(f"Elapsed seconds: {summary.get('elapsed_seconds', 0.0):.1f}")
    failures = summary.get("failures") or []
    if failures:
        lines.append("Failed windows:")
        for item in failures:
            lines.append(
                "  - #{index} ({lat}, {lng}): {reason}".format(
                    index=item.get("index"),
                    lat=item.get("lat"),
                    lng=item.get("lng"),
                    reason=item.get("reason") or "",
                )
            )
    return lines


def render_store_sample(snapshot: List[Dict[str, Any]], count: int = 5) -> List[str]:
    sample = snapshot[: max(0, count)]
    lines = [f"Sample of {len(sample)} stores:"]
    for idx, store in enumerate(sample, start=1):
        address = store.get("physicalAddress") or {}
        lines.append(f"{idx}. {store.get('name') or ''}")
        lines.append(
            "   {address1}, {postal} {city}".format(
                address1=address.get("address1") or "",
                postal=address.get("postalCode") or "",
                city=address.get("city") or "",
            )
        )
        lines.append(f"   {store.get('latitude')}, {store.get('longitude')}")
        lines.append(f"   phone: {store.get('phoneNumber') or 'N/A'}")
        lines.append(
            "   delivery={d} dine_in={i} drive_thru={t}".format(
                d=bool(store.get("hasDelivery")),
                i=bool(store.get("hasDineIn")),
                t=bool(store.get("hasDriveThru")),
            )
        )
    return lines


class ProgressReporter:
    """Tracks sweep position and hands it to an optional observer."""

    def __init__(
        self,
        total: int,
        log_every: int = 25,
        logger: Optional[logging.Logger] = None,
        on_progress: Optional[Callable[[int, int, int], None]] = None,
    ) -> None:
        self.total = int(total)
        self.log_every = max(1, int(log_every)) if log_every else 0
        self.logger = logger or logging.getLogger(__name__)
        self.on_progress = on_progress
        self.current_index = 0
        self.unique_count = 0

    def start(self, start_index: int, unique_count: int) -> None:
        self.current_index = int(start_index)
        self.unique_count = int(unique_count)
        self.logger.info(
            "Progress: processed=%s/%s unique_stores=%s",
            self.current_index,
            self.total,
            self.unique_count,
        )

    def advance(self, current_index: int, unique_count: int) -> None:
        self.current_index = int(current_index)
        self.unique_count = int(unique_count)
        if self.log_every and (
            self.current_index % self.log_every == 0 or self.current_index == self.total
        ):
            self.logger.info(
                "Progress: processed=%s/%s unique_stores=%s",
                self.current_index,
                self.total,
                self.unique_count,
            )
        if self.on_progress is not None:
            self.on_progress(self.current_index, self.total, self.unique_count)
