"""Sweep orchestration: grid -> locator client -> registry."""
from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from . import config
from .geo import Coordinate
from .http import TransportInitError
from .locator_client import FetchResult, SearchWindow
from .registry import StoreRegistry
from .reporting import (
    ExportIOError,
    ProgressReporter,
    load_json,
    write_checkpoint,
)

logger = logging.getLogger(__name__)

MAX_RETRY_BACKOFF_SECONDS = 60.0


class SweepStatus(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class WindowClient(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...

    def fetch(self, window: SearchWindow) -> FetchResult: ...


@dataclass(frozen=True)
class WindowFailure:
    index: int
    coordinate: Coordinate
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "lat": self.coordinate.lat,
            "lng": self.coordinate.lng,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WindowFailure":
        return cls(
            index=int(data["index"]),
            coordinate=Coordinate(lat=float(data["lat"]), lng=float(data["lng"])),
            reason=str(data.get("reason") or ""),
        )


@dataclass
class SweepCheckpoint:
    """Where an interrupted sweep stopped and what it had counted so far."""

    next_index: int = 0
    registry: StoreRegistry = field(default_factory=StoreRegistry)
    windows_processed: int = 0
    truncated_windows: int = 0
    failures: List[WindowFailure] = field(default_factory=list)


@dataclass
class SweepResult:
    status: SweepStatus
    registry: StoreRegistry
    windows_total: int
    windows_processed: int = 0
    failures: List[WindowFailure] = field(default_factory=list)
    truncated_windows: int = 0
    checkpoint_failures: int = 0
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def windows_failed(self) -> int:
        return len(self.failures)

    @property
    def unique_stores(self) -> int:
        return self.registry.size()

    @property
    def discarded_records(self) -> int:
        return self.registry.discarded

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "unique_stores": self.unique_stores,
            "windows_total": self.windows_total,
            "windows_processed": self.windows_processed,
            "windows_failed": self.windows_failed,
            "truncated_windows": self.truncated_windows,
            "discarded_records": self.discarded_records,
            "duplicates": self.registry.duplicates,
            "checkpoint_failures": self.checkpoint_failures,
            "cancelled": self.cancelled,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
            "failures": [f.to_dict() for f in self.failures],
        }


def checkpoint_paths(output_dir: str) -> Tuple[str, str]:
    return (
        os.path.join(output_dir, config.SNAPSHOT_FILENAME),
        os.path.join(output_dir, config.STATE_FILENAME),
    )


def _grid_fingerprint(grid: Sequence[Coordinate]) -> Dict[str, Any]:
    return {
        "grid_size": len(grid),
        "first": [grid[0].lat, grid[0].lng] if grid else None,
        "last": [grid[-1].lat, grid[-1].lng] if grid else None,
    }


def load_checkpoint(output_dir: str, grid: Sequence[Coordinate]) -> SweepCheckpoint:
    """Saved progress for this grid, or an empty checkpoint if there is none.

    Raises ValueError when the saved state was written for a different grid
    or cannot be parsed. Read errors surface as OSError.
    """
    snapshot_path, state_path = checkpoint_paths(output_dir)
    if not os.path.exists(state_path):
        return SweepCheckpoint()

    state = load_json(state_path)
    if not isinstance(state, dict):
        raise ValueError(f"Checkpoint state in {state_path} is not an object")
    expected = _grid_fingerprint(grid)
    for key, value in expected.items():
        if state.get(key) != value:
            raise ValueError(
                f"Checkpoint in {output_dir} belongs to a different grid ({key} mismatch)"
            )

    records = load_json(snapshot_path) if os.path.exists(snapshot_path) else []
    registry = StoreRegistry.from_snapshot(records)
    registry.duplicates = int(state.get("duplicates", 0))
    registry.discarded = int(state.get("discarded", 0))

    next_index = max(0, min(int(state.get("next_index", 0)), len(grid)))
    try:
        failures = [WindowFailure.from_dict(item) for item in state.get("failures") or []]
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Checkpoint state in {state_path} has malformed failures: {exc}") from exc
    checkpoint = SweepCheckpoint(
        next_index=next_index,
        registry=registry,
        windows_processed=int(state.get("windows_processed", next_index)),
        truncated_windows=int(state.get("truncated_windows", 0)),
        failures=failures,
    )
    logger.info(
        "Resuming sweep: next_index=%s/%s unique_stores=%s windows_failed=%s",
        next_index,
        len(grid),
        registry.size(),
        len(failures),
    )
    return checkpoint


class SweepController:
    """Runs one sweep over a grid, one window at a time.

    Per-window errors are recorded and skipped; only a transport that cannot
    be opened stops the sweep. The registry, the client session and the
    counters belong to this controller alone. A ``checkpoint`` from
    :func:`load_checkpoint` continues an earlier sweep, counters included.
    """

    def __init__(
        self,
        client: WindowClient,
        grid: Sequence[Coordinate],
        *,
        radius_m: float = config.SEARCH_RADIUS_M,
        delay_seconds: float = config.REQUEST_DELAY_SECONDS,
        checkpoint_every: int = config.CHECKPOINT_EVERY,
        output_dir: Optional[str] = None,
        window_retries: int = config.WINDOW_RETRIES,
        retry_backoff_seconds: float = config.RETRY_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        on_progress: Optional[Callable[[int, int, int], None]] = None,
        checkpoint: Optional[SweepCheckpoint] = None,
        log_every: int = config.PROGRESS_LOG_EVERY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        checkpoint = checkpoint if checkpoint is not None else SweepCheckpoint()
        if radius_m <= 0:
            raise ValueError("radius_m must be positive")
        if delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        if checkpoint_every <= 0:
            raise ValueError("checkpoint_every must be positive")
        if window_retries < 0:
            raise ValueError("window_retries must not be negative")
        if checkpoint.next_index < 0 or checkpoint.next_index > len(grid):
            raise ValueError("checkpoint index is outside the grid")

        self.client = client
        self.grid = list(grid)
        self.radius_m = radius_m
        self.delay_seconds = float(delay_seconds)
        self.checkpoint_every = int(checkpoint_every)
        self.output_dir = output_dir
        self.window_retries = int(window_retries)
        self.retry_backoff_seconds = float(retry_backoff_seconds)
        self.sleep = sleep
        self.registry = checkpoint.registry
        self.start_index = int(checkpoint.next_index)
        self.clock = clock
        self.status = SweepStatus.IDLE
        self.progress = ProgressReporter(
            total=len(self.grid), log_every=log_every, logger=logger, on_progress=on_progress
        )
        self.result = SweepResult(
            status=self.status,
            registry=self.registry,
            windows_total=len(self.grid),
            windows_processed=checkpoint.windows_processed,
            failures=list(checkpoint.failures),
            truncated_windows=checkpoint.truncated_windows,
        )
        self._next_index = self.start_index
        self._cancel = threading.Event()

    @property
    def total(self) -> int:
        return len(self.grid)

    @property
    def current_index(self) -> int:
        return self._next_index

    @property
    def unique_count(self) -> int:
        return self.registry.size()

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self) -> SweepResult:
        if self.status is not SweepStatus.IDLE:
            raise RuntimeError(f"Sweep already {self.status.value}")
        started = self.clock()
        result = self.result

        self._set_status(SweepStatus.INITIALIZING)
        logger.info("Sweep initializing: windows=%s radius_m=%s", self.total, self.radius_m)
        try:
            self.client.open()
        except TransportInitError as exc:
            self._set_status(SweepStatus.FAILED)
            logger.error("Transport init failed: %s", exc)
            raise

        try:
            self._set_status(SweepStatus.RUNNING)
            self.progress.start(self.start_index, self.unique_count)
            self._run_windows(result)
        except BaseException:
            self._set_status(SweepStatus.FAILED)
            raise
        finally:
            self.client.close()

        self._set_status(SweepStatus.COMPLETED)
        result.cancelled = self.cancelled
        if self.output_dir:
            self._checkpoint()
        result.elapsed_seconds = self.clock() - started
        logger.info(
            "Sweep complete: unique_stores=%s windows_failed=%s discarded=%s cancelled=%s",
            result.unique_stores,
            result.windows_failed,
            result.discarded_records,
            result.cancelled,
        )
        return result

    def _set_status(self, status: SweepStatus) -> None:
        self.status = status
        self.result.status = status

    def _run_windows(self, result: SweepResult) -> None:
        for index in range(self.start_index, self.total):
            if self.cancelled:
                logger.info("Sweep cancelled: next_index=%s/%s", index, self.total)
                break
            coord = self.grid[index]
            window = SearchWindow(coordinate=coord, radius_m=self.radius_m)
            fetched = self._fetch_window(index, window)

            if fetched.ok:
                new_count = self.registry.insert(fetched.stores)
                logger.debug(
                    "Window done: index=%s lat=%s lng=%s returned=%s new=%s",
                    index,
                    coord.lat,
                    coord.lng,
                    len(fetched.stores),
                    new_count,
                )
            else:
                reason = str(fetched.error)
                result.failures.append(WindowFailure(index=index, coordinate=coord, reason=reason))
                logger.warning(
                    "Window failed: index=%s lat=%s lng=%s reason=%s", index, coord.lat, coord.lng, reason
                )
            if fetched.truncated:
                result.truncated_windows += 1

            result.windows_processed += 1
            self._next_index = index + 1
            self.progress.advance(self._next_index, self.unique_count)

            if self.output_dir and self._next_index % self.checkpoint_every == 0:
                self._checkpoint()

            if self._next_index < self.total and not self.cancelled and self.delay_seconds > 0:
                self.sleep(self.delay_seconds)

    def _fetch_window(self, index: int, window: SearchWindow) -> FetchResult:
        attempt = 0
        while True:
            fetched = self.client.fetch(window)
            if fetched.ok or attempt >= self.window_retries or self.cancelled:
                return fetched
            attempt += 1
            delay = min(self.retry_backoff_seconds * (2 ** (attempt - 1)), MAX_RETRY_BACKOFF_SECONDS)
            logger.info(
                "Retrying window: index=%s attempt=%s delay=%.1fs reason=%s",
                index,
                attempt,
                delay,
                fetched.error,
            )
            self.sleep(delay)

    def state(self) -> Dict[str, Any]:
        payload = _grid_fingerprint(self.grid)
        payload.update(
            {
                "next_index": self._next_index,
                "radius_m": self.radius_m,
                "status": self.status.value,
                "unique_stores": self.unique_count,
                "windows_processed": self.result.windows_processed,
                "truncated_windows": self.result.truncated_windows,
                "duplicates": self.registry.duplicates,
                "discarded": self.registry.discarded,
                "failures": [f.to_dict() for f in self.result.failures],
            }
        )
        return payload

    def _checkpoint(self) -> None:
        snapshot_path, state_path = checkpoint_paths(self.output_dir)
        try:
            write_checkpoint(snapshot_path, state_path, self.registry.snapshot(), self.state())
        except ExportIOError as exc:
            self.result.checkpoint_failures += 1
            logger.error("Checkpoint failed: next_index=%s reason=%s", self._next_index, exc)
            return
        logger.debug(
            "Checkpoint written: next_index=%s unique_stores=%s", self._next_index, self.unique_count
        )
