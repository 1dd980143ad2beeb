"""Per-host field alias resolution.

Field ids differ between tracker instances, so aliases like ``services`` or
``story points`` are resolved per host: first through the host's configured
``field_map``, then through the field catalogue cached by ``field sync``,
otherwise the alias passes through unchanged.

A FieldAliasCache is created for one command invocation and handed to the
reconciler; it memoizes catalogue reads for that invocation only.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from issuetwin.types import utc_now

logger = logging.getLogger(__name__)


def _normalize_entry(entry: Any) -> Optional[str]:
    """A field_map entry is either a field id or ``{field: id}``."""
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict):
        return entry.get("jira_field") or entry.get("field")
    return None


class FieldAliasCache:
    """Alias -> remote field id lookups, scoped to one invocation.

    Args:
        cache_dir: Directory containing ``fields/<host>.yaml`` catalogues
        field_maps: host name -> configured alias map
    """

    def __init__(self, cache_dir: Path, field_maps: Optional[Dict[str, Dict[str, Any]]] = None):
        self.fields_dir = Path(cache_dir) / "fields"
        self.field_maps = field_maps or {}
        self._catalogues: Dict[str, Optional[Dict[str, Any]]] = {}

    def catalogue(self, host: str) -> Optional[Dict[str, Any]]:
        """Cached field definitions for ``host`` (field id -> definition)."""
        if host not in self._catalogues:
            path = self.fields_dir / f"{host}.yaml"
            data = None
            if path.exists():
                try:
                    with open(path, encoding="utf-8") as f:
                        data = (yaml.safe_load(f) or {}).get("fields")
                except (yaml.YAMLError, OSError) as e:
                    logger.warning(f"Could not load field cache for {host}: {e}")
            self._catalogues[host] = data
        return self._catalogues[host]

    def resolve(self, host: str, alias: str) -> str:
        """Remote field id for ``alias`` on ``host``; pass-through if unmapped."""
        mapped = _normalize_entry(self.field_maps.get(host, {}).get(alias))
        if mapped:
            return mapped

        catalogue = self.catalogue(host) or {}
        wanted = alias.lower().strip()
        for field_id, definition in catalogue.items():
            if str((definition or {}).get("name", "")).lower() == wanted:
                return field_id
        for field_id, definition in catalogue.items():
            clause_names = (definition or {}).get("clause_names") or []
            if any(str(c).lower() == wanted for c in clause_names):
                return field_id

        return alias

    def write_definitions(self, host: str, fields: List[Dict[str, Any]]) -> Path:
        """Store a host's remote field catalogue. Used by ``field sync``."""
        self.fields_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "metadata": {
                "host": host,
                "synced_at": utc_now(),
                "total_fields": len(fields),
                "custom_fields": sum(1 for f in fields if f.get("custom")),
            },
            "fields": {
                f["id"]: {
                    "name": f.get("name") or "Unknown",
                    "custom": bool(f.get("custom")),
                    "clause_names": list(f.get("clauseNames") or []),
                    "type": (f.get("schema") or {}).get("type"),
                }
                for f in fields
                if f.get("id")
            },
        }

        path = self.fields_dir / f"{host}.yaml"
        fd, tmp_name = tempfile.mkstemp(prefix=f".{host}.", suffix=".tmp", dir=self.fields_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

        self._catalogues[host] = data["fields"]
        return path
