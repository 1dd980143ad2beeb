"""Sync cursor ledger.

One watermark per (host, query pattern), stored in
``<cache>/sync-state.yaml``. Watermarks come from the remote service's own
``updated`` timestamps and never move backwards.
"""

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from issuetwin.types import parse_datetime

logger = logging.getLogger(__name__)

STATE_FILENAME = "sync-state.yaml"


def pattern_key(pattern: Dict[str, Any]) -> str:
    """Stable ledger key for a query pattern."""
    canonical = json.dumps(pattern, sort_keys=True, separators=(",", ":"))
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]


class CursorLedger:
    """Durable per-(host, pattern) high-water marks.

    Args:
        cache_dir: Directory for the ledger file
    """

    def __init__(self, cache_dir: Path):
        self.path = Path(cache_dir) / STATE_FILENAME
        self._state: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"hosts": {}}
        try:
            with open(self.path, encoding="utf-8") as f:
                state = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(f"Ignoring unreadable sync state {self.path}: {e}")
            return {"hosts": {}}
        state.setdefault("hosts", {})
        return state

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".sync-state.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._state, f, sort_keys=True, default_flow_style=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def _patterns(self, host: str) -> Dict[str, Any]:
        hosts = self._state.setdefault("hosts", {})
        return hosts.setdefault(host, {}).setdefault("patterns", {})

    def get(self, host: str, key: str) -> Optional[str]:
        entry = (self._state.get("hosts", {}).get(host) or {}).get("patterns", {}).get(key)
        if isinstance(entry, dict):
            return entry.get("cursor")
        return entry

    def advance(self, host: str, key: str, candidate: str, query: Optional[str] = None) -> str:
        """Move a cursor forward to ``candidate``; never backwards.

        Returns:
            The cursor value now stored.
        """
        current = self.get(host, key)
        new_value = candidate
        if current:
            current_dt, candidate_dt = parse_datetime(current), parse_datetime(candidate)
            if candidate_dt is None or (current_dt is not None and current_dt >= candidate_dt):
                new_value = current

        entry: Dict[str, Any] = {"cursor": new_value}
        if query:
            entry["query"] = query
        self._patterns(host)[key] = entry
        self._save()
        return new_value

    def reset(self, host: Optional[str] = None) -> None:
        """Forget cursors for one host, or for every host."""
        if host is None:
            self._state = {"hosts": {}}
        else:
            self._state.setdefault("hosts", {}).pop(host, None)
        self._save()
