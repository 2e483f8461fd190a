from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from enum import Enum
from typing import Optional

from filelock import FileLock
from pydantic import ValidationError

from backend.src.models import CachedPlan

logger = logging.getLogger(__name__)


class StoreOutcome(str, Enum):
    STORED = "stored"
    DUPLICATE = "duplicate"
    # Advisory: a different plan already sits under this key and was kept.
    CONFLICT = "conflict"


class PlanCache:
    """
    Content-addressed store of validated plans, one JSON document per
    (namespace, fingerprint) key.

    Entries are write-once: the first writer wins and later stores never
    replace it. Documents are written to a temp file and moved into place, so
    a reader never sees a half-written entry.

    With enabled=False (PLAN_CACHE_ENABLED=false) every lookup misses
    and every store reports STORED without touching disk.
    """

    def __init__(
        self, path: Optional[str] = None, lock_timeout: int = 10, enabled: bool = True
    ):
        self.enabled = bool(enabled)
        self.path = os.path.expanduser(path or "~/.restroprocure/plan_cache")
        self.lock_timeout = lock_timeout
        os.makedirs(self.path, exist_ok=True)

    def _namespace_dir(self, namespace: str) -> str:
        digest = hashlib.sha256(namespace.encode("utf-8")).hexdigest()[:16]
        return os.path.join(self.path, digest)

    def _entry_path(self, namespace: str, fingerprint: str) -> str:
        return os.path.join(self._namespace_dir(namespace), f"{fingerprint}.json")

    def _lock(self, namespace: str) -> FileLock:
        return FileLock(self._namespace_dir(namespace) + ".lock", timeout=self.lock_timeout)

    def _read(self, entry_path: str) -> Optional[CachedPlan]:
        if not os.path.exists(entry_path):
            return None
        try:
            with open(entry_path, "r", encoding="utf-8") as f:
                return CachedPlan.model_validate_json(f.read())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable cache entry {entry_path}: {e}")
            return None

    def _atomic_write(self, entry_path: str, cached_plan: CachedPlan):
        dirn = os.path.dirname(entry_path)
        os.makedirs(dirn, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=dirn, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(cached_plan.model_dump_json())
            os.replace(tmp, entry_path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def lookup(self, namespace: str, fingerprint: str) -> Optional[CachedPlan]:
        """Return the stored plan for the key, or None. Never writes anything."""
        if not self.enabled:
            return None
        return self._read(self._entry_path(namespace, fingerprint))

    def store(self, namespace: str, fingerprint: str, cached_plan: CachedPlan) -> StoreOutcome:
        """Persist a validated plan unless the key is already taken."""
        if not self.enabled:
            return StoreOutcome.STORED
        if cached_plan.fingerprint != fingerprint:
            raise ValueError(
                f"Cache key {fingerprint} does not match plan fingerprint {cached_plan.fingerprint}."
            )

        entry_path = self._entry_path(namespace, fingerprint)
        os.makedirs(self._namespace_dir(namespace), exist_ok=True)
        with self._lock(namespace):
            existing = self._read(entry_path)
            if existing is None:
                self._atomic_write(entry_path, cached_plan)
                logger.info(f"--- [PlanCache] Stored plan {fingerprint[:12]} ---")
                return StoreOutcome.STORED
            if existing.response == cached_plan.response:
                return StoreOutcome.DUPLICATE

        logger.warning(
            f"--- [PlanCache] A different plan is already cached under {fingerprint[:12]}; keeping the first one. ---"
        )
        return StoreOutcome.CONFLICT
