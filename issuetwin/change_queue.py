"""Change queue: offline mutations appended to a record's pending state.

Nothing here talks to the remote service. Every operation reads the
record, builds a new PendingChange (or deletion marker, or tag list) and
writes it back through ``RecordStore.mutate_local_state``.
"""

import copy
import json
import logging
from typing import Any, List

from issuetwin.protocols import CrossHostLinkError
from issuetwin.storage.records import RecordStore
from issuetwin.types import LINK_ADD, LINK_REMOVE, LinkOp, QueuedComment, Record, utc_now

logger = logging.getLogger(__name__)

# Fields edited with +item / -item / a,b,c syntax
LIST_FIELDS = frozenset({"labels"})
STATUS_FIELD = "status"
DEFAULT_LINK_TYPE = "Relates"


def parse_value(field_name: str, value: Any) -> Any:
    """Custom field values may be given as JSON (e.g. multiselect arrays)."""
    if field_name.startswith("customfield_") and isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def apply_list_edit(current: List[str], value: str) -> List[str]:
    """Apply ``+item``, ``-item`` or a comma-separated replacement to a list."""
    result = list(current)
    if value.startswith("+"):
        item = value[1:].strip()
        if item and item not in result:
            result.append(item)
    elif value.startswith("-"):
        item = value[1:].strip()
        if item in result:
            result.remove(item)
    else:
        result = [part.strip() for part in value.split(",") if part.strip()]
    return result


class ChangeQueue:
    """Queues field edits, comments, links and deletion markers.

    Args:
        store: The record store holding the records being edited
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def _pending_copy(self, record: Record):
        return copy.deepcopy(record.local.pending)

    def edit(self, record_id: str, field_name: str, value: Any) -> Record:
        """Queue a field edit.

        ``status`` becomes a transition request. List fields accept
        ``+item``/``-item``/``a,b`` against the pending value if one is
        queued, otherwise against the stored remote value.
        """
        record = self.store.read(record_id)
        pending = self._pending_copy(record)

        if field_name == STATUS_FIELD:
            pending.transition = str(value)
        elif field_name in LIST_FIELDS and isinstance(value, str):
            if field_name in pending.fields:
                base = list(pending.fields[field_name] or [])
            else:
                base = list(getattr(record, field_name, None) or [])
            pending.fields[field_name] = apply_list_edit(base, value)
        else:
            pending.fields[field_name] = parse_value(field_name, value)

        logger.debug(f"Queued edit {field_name} on {record.key}")
        return self.store.mutate_local_state(record_id, {"pending": pending})

    def comment(self, record_id: str, text: str) -> Record:
        """Queue a comment; queued comments keep their order."""
        if not text.strip():
            raise ValueError("Comment text cannot be empty")
        record = self.store.read(record_id)
        pending = self._pending_copy(record)
        pending.comments.append(QueuedComment(text=text, queued_at=utc_now()))
        return self.store.mutate_local_state(record_id, {"pending": pending})

    def link(
        self,
        source_id: str,
        target_id: str,
        link_type: str = DEFAULT_LINK_TYPE,
        remove: bool = False,
    ) -> Record:
        """Queue a link add/remove between two records, stored on the source.

        Raises:
            CrossHostLinkError: the records live on different hosts
        """
        source = self.store.read(source_id)
        target = self.store.read(target_id)
        if source.host.rstrip("/") != target.host.rstrip("/"):
            raise CrossHostLinkError(
                f"Cannot link {source.key} and {target.key}: records are on different hosts"
            )

        pending = self._pending_copy(source)
        pending.links.append(
            LinkOp(
                action=LINK_REMOVE if remove else LINK_ADD,
                link_type=link_type,
                inward_key=source.key,
                outward_key=target.key,
                queued_at=utc_now(),
            )
        )
        return self.store.mutate_local_state(source_id, {"pending": pending})

    def mark_deleted(self, record_id: str) -> bool:
        """Mark a record for remote deletion.

        Returns:
            True if newly marked, False if it was already marked.
        """
        record = self.store.read(record_id)
        if record.local.deleted:
            return False
        self.store.mutate_local_state(record_id, {"deleted": utc_now()})
        return True

    def clear_deleted(self, record_id: str) -> bool:
        """Remove a deletion marker.

        Returns:
            True if a marker was removed, False if none was set.
        """
        record = self.store.read(record_id)
        if not record.local.deleted:
            return False
        self.store.mutate_local_state(record_id, {"deleted": None})
        return True

    def tag(self, record_id: str, *tags: str) -> Record:
        """Add local-only tags. Tags are never sent to the remote service."""
        record = self.store.read(record_id)
        updated = list(record.local.tags)
        for tag in tags:
            if tag and tag not in updated:
                updated.append(tag)
        return self.store.mutate_local_state(record_id, {"tags": updated})

    def untag(self, record_id: str, *tags: str) -> Record:
        record = self.store.read(record_id)
        updated = [t for t in record.local.tags if t not in tags]
        return self.store.mutate_local_state(record_id, {"tags": updated})
