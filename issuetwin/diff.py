"""Diff and plan computation.

Three views over the record store:

- ``summarize_remote_changes`` classifies revision history newer than the
  user's last read into a ChangeSummary (run on every save).
- ``diff_since_read`` compares tracked fields with the baseline taken by
  ``mark read``, for the record view.
- ``compute_plan`` derives what ``apply`` would push, from pending state
  only. It makes no network calls and is deterministic for a fixed store.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from issuetwin.types import (
    ChangeSummary,
    FieldChange,
    Plan,
    PlanEntry,
    Record,
    is_after,
)

logger = logging.getLogger(__name__)

COMMENT_PREVIEW_LENGTH = 40

# History field names with dedicated handling
TITLE_FIELDS = frozenset({"summary", "title"})
DESCRIPTION_FIELDS = frozenset({"description"})
LABEL_FIELDS = frozenset({"labels"})
COMPONENT_FIELDS = frozenset({"component", "components"})

DIFF_NEW = "new"
DIFF_CHANGED = "changed"
DIFF_UNCHANGED = "unchanged"

# Baseline fields compared by the read diff, in display order
TRACKED_FIELDS = ("status", "assignee", "priority", "title", "labels", "description", "comment_count")


def _split_labels(value: Optional[str]) -> List[str]:
    return [part for part in (value or "").split() if part]


def _add_unique(values: List[str], value: str) -> None:
    if value not in values:
        values.append(value)


def _net_add(added: List[str], removed: List[str], value: str) -> None:
    """Record an addition, cancelling an earlier removal of the same value."""
    if value in removed:
        removed.remove(value)
    else:
        _add_unique(added, value)


def summarize_remote_changes(
    histories: Iterable[Dict[str, Any]],
    since: Optional[str],
    previous_comment_count: Optional[int],
    current_comment_count: int,
    named_fields: Sequence[str],
) -> Optional[ChangeSummary]:
    """Summarize remote changes after ``since`` (the record's last read).

    Comments are counted from stored comment counts rather than history,
    since the history stream does not reliably carry comment events.

    Returns:
        ChangeSummary, or None when the record was never read or nothing
        changed after the last read.
    """
    if not since:
        return None

    named_lookup = {name.lower(): name for name in named_fields}
    summary = ChangeSummary()

    for entry in histories or []:
        if not is_after(entry.get("created"), since):
            continue
        for item in entry.get("items") or []:
            field_name = str(item.get("field") or item.get("fieldId") or "")
            lowered = field_name.lower()

            if lowered in TITLE_FIELDS:
                summary.title = True
            elif lowered in DESCRIPTION_FIELDS:
                summary.description = True
            elif lowered in LABEL_FIELDS:
                before = set(_split_labels(item.get("fromString")))
                after = set(_split_labels(item.get("toString")))
                for label in sorted(after - before):
                    _net_add(summary.labels_added, summary.labels_removed, label)
                for label in sorted(before - after):
                    _net_add(summary.labels_removed, summary.labels_added, label)
            elif lowered in COMPONENT_FIELDS:
                if item.get("toString"):
                    _net_add(summary.components_added, summary.components_removed, item["toString"])
                if item.get("fromString"):
                    _net_add(
                        summary.components_removed, summary.components_added, item["fromString"]
                    )
            elif lowered in named_lookup:
                _add_unique(summary.named_fields, named_lookup[lowered])
            else:
                summary.other_fields += 1

    if previous_comment_count is not None:
        summary.comments = max(0, current_comment_count - previous_comment_count)

    if summary.is_empty():
        return None
    return summary


def diff_state(record: Record) -> str:
    """Classify a record for display: new, changed or unchanged."""
    local = record.local
    if not local.last_read or local.previous is None:
        return DIFF_NEW
    if local.changes_since_read is not None:
        return DIFF_CHANGED
    if is_after(record.updated, local.last_read):
        return DIFF_CHANGED
    return DIFF_UNCHANGED


def format_change_summary(
    summary: Optional[ChangeSummary], tracked_labels: Sequence[str] = ()
) -> str:
    """One-line rendering, e.g. ``(title, +urgent, status, 2 labels, 1 comment)``."""
    if summary is None:
        return ""

    parts: List[str] = []
    if summary.title:
        parts.append("title")
    if summary.description:
        parts.append("description")

    untracked_labels = 0
    for label in summary.labels_added:
        if label in tracked_labels:
            parts.append(f"+{label}")
        else:
            untracked_labels += 1
    for label in summary.labels_removed:
        if label in tracked_labels:
            parts.append(f"-{label}")
        else:
            untracked_labels += 1

    parts.extend(summary.named_fields)

    if untracked_labels:
        parts.append(f"{untracked_labels} label{'s' if untracked_labels > 1 else ''}")
    component_changes = len(summary.components_added) + len(summary.components_removed)
    if component_changes:
        parts.append(f"{component_changes} component{'s' if component_changes > 1 else ''}")
    if summary.other_fields:
        parts.append(f"{summary.other_fields} field{'s' if summary.other_fields > 1 else ''}")
    if summary.comments:
        parts.append(f"{summary.comments} comment{'s' if summary.comments > 1 else ''}")

    return f"({', '.join(parts)})" if parts else ""


def diff_since_read(record: Record) -> Optional[List[FieldChange]]:
    """Tracked fields that differ from the baseline taken at the last read.

    Returns:
        None when the record was never read (there is no baseline),
        otherwise the changed fields in display order, possibly empty.
    """
    local = record.local
    if not local.last_read or local.previous is None:
        return None

    current = record.tracked_snapshot()
    changes: List[FieldChange] = []
    for name in TRACKED_FIELDS:
        before = local.previous.get(name)
        after = current.get(name)
        if name == "labels":
            before = sorted(before or [])
        if before != after:
            changes.append(FieldChange(field=name, before=before, after=after))
    return changes


# === Plan ===


def current_value(record: Record, field_name: str) -> Any:
    """Stored snapshot value for a pending field, as shown in a plan."""
    if field_name == "status":
        return record.status_name
    if field_name == "assignee":
        return record.assignee_name
    if field_name == "priority":
        return record.priority_name
    if field_name in ("summary", "title"):
        return record.title
    if field_name == "labels":
        return list(record.labels)
    return record.snapshot_dict().get(field_name)


def preview(text: str, length: int = COMMENT_PREVIEW_LENGTH) -> str:
    return text[:length] + ("..." if len(text) > length else "")


def plan_entry(record: Record) -> Optional[PlanEntry]:
    """Planned work for one record, or None if it has nothing queued."""
    if not record.has_pending():
        return None

    entry = PlanEntry(record_id=record.id, key=record.key, host=record.host)
    if record.local.deleted:
        entry.delete = True
        return entry

    pending = record.local.pending
    if pending.transition:
        entry.field_changes.append(
            FieldChange(field="status", before=record.status_name, after=pending.transition)
        )
    for field_name, value in pending.fields.items():
        entry.field_changes.append(
            FieldChange(field=field_name, before=current_value(record, field_name), after=value)
        )
    entry.comments = [preview(c.text) for c in pending.comments]
    entry.links = list(pending.links)
    return entry


def compute_plan(records: Iterable[Record], host_url: Optional[str] = None) -> Plan:
    """Build the plan for every record with pending work.

    Args:
        records: Records to consider (typically the whole store)
        host_url: When set, only records on this host are planned
    """
    plan = Plan()
    ordered = sorted(records, key=lambda r: ((r.key or "").upper(), r.id))
    for record in ordered:
        if host_url and record.host.rstrip("/") != host_url.rstrip("/"):
            continue
        entry = plan_entry(record)
        if entry is None:
            continue
        plan.entries.append(entry)
        plan.summary.records += 1
        if entry.delete:
            plan.summary.deletions += 1
            continue
        plan.summary.field_updates += len(entry.field_changes)
        plan.summary.comments += len(entry.comments)
        plan.summary.link_changes += len(entry.links)
    return plan


def _display(value: Any) -> str:
    if value is None:
        return "None"
    if isinstance(value, list):
        if value and isinstance(value[0], dict):
            return str(value)
        return ", ".join(str(v) for v in value) or "None"
    return str(value)


def render_plan(plan: Plan) -> List[str]:
    """Human-readable plan lines."""
    lines: List[str] = []
    for entry in plan.entries:
        if entry.delete:
            lines.append(f"- {entry.key} ({entry.short_id})")
            lines.append("    DELETE - Marked for deletion")
            lines.append("")
            continue

        lines.append(f"~ {entry.key} ({entry.short_id})")
        for change in entry.field_changes:
            lines.append(f'    {change.field}: "{_display(change.before)}" → "{_display(change.after)}"')
        for comment in entry.comments:
            lines.append(f'    + comment: "{comment}"')
        for link in entry.links:
            if link.action == "add":
                lines.append(f"    + link: {link.inward_key} → {link.link_type} → {link.outward_key}")
            else:
                lines.append(f"    - link: {link.inward_key} ← {link.link_type} → {link.outward_key}")
        lines.append("")

    summary = plan.summary
    lines.append(f"Plan: {summary.records} record(s) with changes")
    parts = []
    if summary.deletions:
        parts.append(f"{summary.deletions} deletion(s)")
    parts.append(f"{summary.field_updates} field update(s)")
    parts.append(f"{summary.comments} comment(s)")
    if summary.link_changes:
        parts.append(f"{summary.link_changes} link change(s)")
    lines.append(f"      {', '.join(parts)}")
    return lines
