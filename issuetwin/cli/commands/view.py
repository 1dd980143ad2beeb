"""Read-side commands: list, mark and view."""

import logging
from typing import TYPE_CHECKING

import yaml

from issuetwin.diff import DIFF_UNCHANGED, diff_since_read, diff_state, format_change_summary
from issuetwin.protocols import IssueTwinError
from issuetwin.types import is_after

if TYPE_CHECKING:
    from issuetwin import IssueTwin

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 45


def _line(record, index: int, tracked_labels) -> str:
    title = record.title or "No summary"
    if len(title) > MAX_TITLE_LENGTH:
        title = title[:MAX_TITLE_LENGTH] + "…"
    marker = "*" if record.has_pending() else " "
    changes = format_change_summary(record.local.changes_since_read, tracked_labels)
    columns = [
        f"{index:>3}.{marker}",
        record.id[:6],
        record.key,
        f"P{record.priority_name or '-'}",
        record.status_name or "Unknown",
        title,
    ]
    if changes:
        columns.append(changes)
    return "  " + "\t".join(columns)


def cmd_list(args, twin: "IssueTwin"):
    """List records that are unread or changed since last read."""
    records = twin.records(host=args.host)
    if not records:
        print("No records in storage.")
        print('Run "issuetwin pull" to fetch records.')
        return

    if args.project:
        prefix = args.project.upper() + "-"
        records = [r for r in records if (r.key or "").upper().startswith(prefix)]
    if args.status:
        wanted = args.status.lower()
        records = [r for r in records if wanted in (r.status_name or "").lower()]
    if args.tag:
        records = [r for r in records if args.tag in r.local.tags]
    if not args.all:
        records = [r for r in records if diff_state(r) != DIFF_UNCHANGED]

    records.sort(key=lambda r: r.updated or "", reverse=True)
    shown = records[: args.limit]

    if not shown:
        print("No records to show.")
        if not args.all:
            print("Use --all to include records already read.")
        return

    label = "records in cache" if args.all else "unread records"
    print(f"📖 {len(records)} {label} (showing {len(shown)}):\n")
    for index, record in enumerate(shown, start=1):
        print(_line(record, index, twin.config.tracked_labels))

    remaining = len(records) - len(shown)
    if remaining > 0:
        print(f"\n   ... and {remaining} more")


def cmd_mark(args, twin: "IssueTwin"):
    """Mark records as read (new diff baseline), or clear read state."""
    if args.all:
        count = twin.store.mark_all_read()
        if count:
            print(f"✓ Marked {count} record(s) as read.")
        else:
            print("All records are already marked as read.")
        return

    if not args.ids:
        print("Give one or more record ids, or --all.")
        return

    for value in args.ids:
        try:
            record_id, record = twin.resolve(value)
        except IssueTwinError as e:
            print(f"✗ {value}: {e}")
            continue
        label = record.key or record_id[:6]
        if args.clear:
            twin.store.clear_read(record_id)
            print(f"✓ Cleared last_read: {label}")
        else:
            twin.store.mark_read(record_id)
            print(f"✓ Marked as read: {label}")


# === Record view ===

DIFF_LABELS = {
    "status": "Status",
    "assignee": "Assignee",
    "priority": "Priority",
    "title": "Summary",
    "labels": "Labels",
    "description": "Description",
    "comment_count": "Comments",
}


def _value(value) -> str:
    if value is None or value == []:
        return "None"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return str(value)


def _print_full(record) -> None:
    print(record.body.rstrip())
    pending = record.local.pending.to_dict()
    if pending:
        print("\n---\n")
        print("## Pending Changes (not yet applied)\n")
        print(yaml.safe_dump(pending, sort_keys=False, allow_unicode=True).rstrip())


def _print_diff(record, tracked_labels) -> None:
    print(f"# {record.key}: {record.title or 'No summary'}\n")

    changes = diff_since_read(record)
    if changes is None:
        print("★ NEW (never read)\n")
        _print_full(record)
        return

    last_read = record.local.last_read
    if not changes and not is_after(record.updated, last_read):
        print("✓ No changes since last read")
        print(f"  Last read: {last_read}")
        print(f"  Last updated: {record.updated}")
        return

    print(f"Changes since {last_read.split('T')[0]}:\n")
    if not changes:
        print("  (No tracked field changes; the record was updated remotely)\n")
    for change in changes:
        label = DIFF_LABELS.get(change.field, change.field)
        if change.field == "description":
            print(f"  {label}: (changed)\n")
            continue
        print(f"  {label}:")
        print(f"    - {_value(change.before)}")
        print(f"    + {_value(change.after)}")
        print("")

    activity = format_change_summary(record.local.changes_since_read, tracked_labels)
    if activity:
        print(f"Remote activity: {activity}")
    print(f"Link: {record.web_link}")


def cmd_view(args, twin: "IssueTwin"):
    """Show a record: changes since last read by default, or --full / --raw."""
    _, record = twin.resolve(args.id)

    if args.raw:
        print("---")
        print(yaml.safe_dump(record.to_dict(), sort_keys=False, allow_unicode=True).rstrip())
        print("---")
    elif args.full:
        _print_full(record)
    else:
        _print_diff(record, twin.config.tracked_labels)
