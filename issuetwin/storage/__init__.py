"""issuetwin storage.

Local-first storage: one Markdown file per cached record, plus the sync
cursor ledger and the per-host field catalogue under the cache directory.
"""

from .cursors import CursorLedger, pattern_key
from .field_cache import FieldAliasCache
from .records import RecordStore, render_body

__all__ = [
    "CursorLedger",
    "FieldAliasCache",
    "RecordStore",
    "pattern_key",
    "render_body",
]
