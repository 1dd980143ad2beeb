"""Offline mutation commands: edit, comment, link, delete and tag.

None of these contact the remote service; changes are queued on the
record and pushed by ``issuetwin apply``.
"""

import logging
from typing import TYPE_CHECKING

from issuetwin.addressing import short_id
from issuetwin.cli.commands.helpers import validate_input
from issuetwin.diff import preview

if TYPE_CHECKING:
    from issuetwin import IssueTwin

logger = logging.getLogger(__name__)

NEXT_STEP_HINT = '\nRun "issuetwin plan" to preview, "issuetwin apply" to push.'


def _label(record) -> str:
    return record.key or short_id(record.id)


def cmd_edit(args, twin: "IssueTwin"):
    """Queue a field edit."""
    record_id, _ = twin.resolve(args.id)
    field_name = validate_input(args.field, "field", 200)
    if not args.value:
        raise ValueError("value is required")
    value = validate_input(" ".join(args.value), "value")

    record = twin.queue.edit(record_id, field_name, value)
    print(f"✓ Queued edit: {_label(record)}")
    if field_name == "status":
        print(f"  status = {record.local.pending.transition}")
    else:
        print(f"  {field_name} = {record.local.pending.fields.get(field_name)}")
    print(NEXT_STEP_HINT)


def cmd_comment(args, twin: "IssueTwin"):
    """Queue a comment."""
    record_id, _ = twin.resolve(args.id)
    text = validate_input(" ".join(args.text), "comment")

    record = twin.queue.comment(record_id, text)
    print(f"✓ Queued comment: {_label(record)}")
    print(f'  "{preview(text, 50)}"')
    print(NEXT_STEP_HINT)


def cmd_link(args, twin: "IssueTwin"):
    """Queue a link add or removal between two records on the same host."""
    source_id, source = twin.resolve(args.id1)
    target_id, target = twin.resolve(args.id2)
    link_type = validate_input(args.type, "link type", 100)

    twin.queue.link(source_id, target_id, link_type=link_type, remove=args.remove)
    if args.remove:
        print(f"✓ Queued link removal: {_label(source)} ← {link_type} → {_label(target)}")
    else:
        print(f"✓ Queued link: {_label(source)} → {link_type} → {_label(target)}")
    print(NEXT_STEP_HINT)


def cmd_delete(args, twin: "IssueTwin"):
    """Mark records for remote deletion, or clear the marker."""
    for value in args.ids:
        record_id, record = twin.resolve(value)
        label = _label(record)
        if args.clear:
            if twin.queue.clear_deleted(record_id):
                print(f"✓ Cleared deletion: {label}")
            else:
                print(f"⚠ {label}: Not marked for deletion")
        elif twin.queue.mark_deleted(record_id):
            print(f"✓ Marked for deletion: {label}")
        else:
            print(f"⚠ {label}: Already marked for deletion")

    if not args.clear:
        print('  Run "issuetwin plan" to preview, "issuetwin apply" to delete remotely.')


def cmd_tag(args, twin: "IssueTwin"):
    """Add or remove local-only tags."""
    record_id, _ = twin.resolve(args.id)
    tags = [validate_input(t, "tag", 100) for t in args.tags]

    if args.remove:
        record = twin.queue.untag(record_id, *tags)
    else:
        record = twin.queue.tag(record_id, *tags)
    print(f"✓ Tags on {_label(record)}: {', '.join(record.local.tags) or '(none)'}")
