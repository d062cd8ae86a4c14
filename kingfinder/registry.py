"""In-memory store registry keyed by store identity."""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("storeId", "number")


class IdentityError(RuntimeError):
    pass


def identity_key(record: Any) -> str:
    """storeId, else number. Raises IdentityError when neither is usable."""
    if not isinstance(record, dict):
        raise IdentityError(f"Record is not an object: {type(record).__name__}")
    for name in IDENTITY_FIELDS:
        value = record.get(name)
        if value is None or isinstance(value, bool):
            continue
        key = str(value).strip()
        if key:
            return key
    raise IdentityError("Record has neither storeId nor number")


class StoreRegistry:
    """First-write-wins store set.

    The first record seen for an identity is kept as received, including
    fields nobody exports yet. Later duplicates are dropped even when their
    fields differ. Records are deep-copied on the way in and out, so neither
    the fetched candidates nor a snapshot share state with the registry.
    Single writer only: insertion order and the counters are not protected
    against concurrent inserts.
    """

    def __init__(self) -> None:
        self._stores: Dict[str, Dict[str, Any]] = {}
        self.duplicates = 0
        self.discarded = 0

    @classmethod
    def from_snapshot(cls, records: Iterable[Dict[str, Any]]) -> "StoreRegistry":
        registry = cls()
        registry.insert(records)
        registry.duplicates = 0
        registry.discarded = 0
        return registry

    def insert(self, candidates: Iterable[Any]) -> int:
        new_count = 0
        for record in candidates:
            try:
                key = identity_key(record)
            except IdentityError as exc:
                self.discarded += 1
                name = record.get("name") if isinstance(record, dict) else None
                logger.warning("Discarded record: reason=%s name=%s", exc, name)
                continue
            if key in self._stores:
                self.duplicates += 1
                continue
            self._stores[key] = copy.deepcopy(record)
            new_count += 1
        return new_count

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        record = self._stores.get(key)
        return copy.deepcopy(record) if record is not None else None

    def snapshot(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(record) for record in self._stores.values()]

    def size(self) -> int:
        return len(self._stores)

    def __len__(self) -> int:
        return len(self._stores)

    def __contains__(self, key: object) -> bool:
        return key in self._stores
