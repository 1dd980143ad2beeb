"""Record store for issuetwin.

One Markdown file per cached record: YAML frontmatter holding the remote
snapshot and the ``local`` section, followed by a rendered body for humans.
Every write goes through ``_write``, which writes a temp file in the same
directory and renames it over the target, so a crash never leaves a
half-written record behind.
"""

import dataclasses
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import yaml

from issuetwin.addressing import identify
from issuetwin.config import DEFAULT_NAMED_FIELDS
from issuetwin.diff import summarize_remote_changes
from issuetwin.protocols import NotFoundError
from issuetwin.types import LocalState, Record, is_after, utc_now

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".md"
FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---\n\n?(.*)\Z", re.DOTALL)

LOCAL_STATE_FIELDS = frozenset(f.name for f in dataclasses.fields(LocalState))

PERSON_KEYS = ("displayName", "name", "emailAddress", "accountId")


def _ref(value: Optional[Dict[str, Any]], keys: Sequence[str]) -> Optional[Dict[str, Any]]:
    """Keep only the identifying keys of a nested remote object."""
    if not isinstance(value, dict):
        return None
    trimmed = {k: value[k] for k in keys if value.get(k) is not None}
    return trimmed or None


def _normalize_comment(comment: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": comment.get("id"),
        "author": _ref(comment.get("author"), ("displayName", "emailAddress")),
        "body": comment.get("body"),
        "created": comment.get("created"),
        "updated": comment.get("updated"),
    }


def _normalize_attachment(attachment: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": attachment.get("id"),
        "filename": attachment.get("filename"),
        "size": attachment.get("size"),
        "mime_type": attachment.get("mimeType"),
        "created": attachment.get("created"),
        "author": (attachment.get("author") or {}).get("displayName"),
        "url": attachment.get("content"),
    }


def _normalize_link(link: Dict[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": link.get("id"),
        "type": (link.get("type") or {}).get("name"),
    }
    if link.get("outwardIssue"):
        data["outward_key"] = link["outwardIssue"].get("key")
    if link.get("inwardIssue"):
        data["inward_key"] = link["inwardIssue"].get("key")
    return data


def render_body(record: Record) -> str:
    """Markdown body shown below the frontmatter.

    Metadata lines end in two spaces so they render as line breaks without
    blank lines between them.
    """
    project = record.project or {}
    lines = [
        f"# {record.key}: {record.title or 'No summary'}",
        "",
        f"**Status:** {record.status_name or 'Unknown'}  ",
        f"**Priority:** {record.priority_name or 'None'}  ",
        f"**Assignee:** {record.assignee_name or 'Unassigned'}  ",
        f"**Reporter:** {(record.reporter or {}).get('displayName') or 'Unknown'}  ",
        f"**Project:** {project.get('name') or ''} ({project.get('key') or ''})  ",
        f"**Created:** {(record.created or '').split('T')[0]}  ",
        f"**Updated:** {(record.updated or '').split('T')[0]}  ",
        f"**Link:** [{record.key}]({record.web_link})",
        "",
        "---",
        "",
        "## Description",
        "",
        record.description or "_No description provided._",
    ]

    if record.comments:
        lines.extend(["", "---", "", "## Comments", ""])
        for comment in record.comments:
            author = (comment.get("author") or {}).get("displayName") or "Unknown"
            created = (comment.get("created") or "Unknown date").split(".")[0].replace("T", " ")
            lines.append(f"### {author} ({created})")
            lines.append("")
            lines.append(comment.get("body") or "_No content_")
            lines.append("")

    return "\n".join(lines).rstrip("\n") + "\n"


class RecordStore:
    """File-backed store of cached records.

    Args:
        storage_dir: Directory holding ``<id>.md`` files
        named_fields: History fields reported individually in change summaries
    """

    def __init__(self, storage_dir: Path, named_fields: Optional[Sequence[str]] = None):
        self.storage_dir = Path(storage_dir)
        self.named_fields = list(named_fields or DEFAULT_NAMED_FIELDS)

    # === Paths & listing ===

    def ensure_dirs(self) -> None:
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, record_id: str) -> Path:
        return self.storage_dir / f"{record_id}{RECORD_SUFFIX}"

    def exists(self, record_id: str) -> bool:
        return self.path_for(record_id).exists()

    def list_ids(self) -> List[str]:
        """Ids of every stored record, sorted."""
        if not self.storage_dir.exists():
            return []
        return sorted(
            p.name[: -len(RECORD_SUFFIX)]
            for p in self.storage_dir.iterdir()
            if p.is_file() and p.name.endswith(RECORD_SUFFIX) and not p.name.startswith("_")
        )

    def iter_records(self) -> Iterator[Record]:
        """Yield every readable record; unreadable files are logged and skipped."""
        for record_id in self.list_ids():
            try:
                yield self.read(record_id)
            except (NotFoundError, yaml.YAMLError, KeyError) as e:
                logger.warning(f"Skipping unreadable record {record_id}: {e}")

    # === Read / write ===

    def read(self, record_id: str) -> Record:
        path = self.path_for(record_id)
        if not path.exists():
            raise NotFoundError(f"Record not found: {record_id}")

        content = path.read_text(encoding="utf-8")
        match = FRONTMATTER_RE.match(content)
        if not match:
            raise NotFoundError(f"Record file is malformed: {path.name}")

        data = yaml.safe_load(match.group(1)) or {}
        data.setdefault("id", record_id)
        return Record.from_dict(data, body=match.group(2))

    def _write(self, record: Record) -> None:
        """Persist atomically: temp file in the same directory, then rename."""
        self.ensure_dirs()
        frontmatter = yaml.safe_dump(
            record.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False
        )
        content = f"---\n{frontmatter}---\n\n{record.body}"

        target = self.path_for(record.id)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{record.id}.", suffix=".tmp", dir=self.storage_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    # === Remote snapshot ===

    def materialize(self, issue: Dict[str, Any], host: str) -> Record:
        """Map a remote payload to snapshot fields. LocalState is left empty."""
        fields = issue.get("fields") or {}
        host = host.rstrip("/")
        key = issue["key"]
        return Record(
            id=identify(host, key),
            key=key,
            host=host,
            remote_id=str(issue["id"]) if issue.get("id") is not None else None,
            title=fields.get("summary"),
            status=_ref(fields.get("status"), ("name", "id")),
            priority=_ref(fields.get("priority"), ("name", "id")),
            issue_type=_ref(fields.get("issuetype"), ("name", "id")),
            assignee=_ref(fields.get("assignee"), PERSON_KEYS),
            reporter=_ref(fields.get("reporter"), PERSON_KEYS),
            project=_ref(fields.get("project"), ("key", "name")),
            created=fields.get("created"),
            updated=fields.get("updated"),
            labels=list(fields.get("labels") or []),
            components=[_ref(c, ("name", "id")) or {} for c in fields.get("components") or []],
            description=fields.get("description"),
            attachments=[_normalize_attachment(a) for a in fields.get("attachment") or []],
            issue_links=[_normalize_link(link) for link in fields.get("issuelinks") or []],
            web_link=f"{host}/browse/{key}",
        )

    def save(
        self,
        issue: Dict[str, Any],
        host: str,
        comments: Optional[List[Dict[str, Any]]] = None,
        changelog: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Overwrite the remote snapshot of a record, preserving its local state.

        Re-entrant: saving the same payload twice changes only ``last_sync``
        and ``changes_since_read``. ``comments``/``changelog`` of None mean
        the enrichment was unavailable; previously stored comments and the
        previous change summary are then kept rather than wiped.

        Returns:
            The record id.
        """
        record = self.materialize(issue, host)

        existing: Optional[Record] = None
        if self.exists(record.id):
            try:
                existing = self.read(record.id)
            except (NotFoundError, yaml.YAMLError) as e:
                # Local state is unrecoverable; start it afresh rather than fail the pull
                logger.warning(f"Replacing unreadable record {record.id}: {e}")

        local = existing.local if existing else LocalState()

        if comments is not None:
            record.comments = [_normalize_comment(c) for c in comments]
        elif existing:
            record.comments = list(existing.comments)

        local.last_sync = utc_now()
        if not local.last_read:
            # Never read: the whole record is new, there is no baseline to diff
            local.previous = None
            local.changes_since_read = None
        elif changelog is not None:
            previous_count = (local.previous or {}).get("comment_count")
            local.changes_since_read = summarize_remote_changes(
                changelog.get("histories") or [],
                since=local.last_read,
                previous_comment_count=previous_count,
                current_comment_count=len(record.comments),
                named_fields=self.named_fields,
            )

        record.local = local
        record.body = render_body(record)
        self._write(record)
        return record.id

    # === Local state ===

    def mutate_local_state(self, record_id: str, patch: Dict[str, Any]) -> Record:
        """Shallow-merge ``patch`` into a record's LocalState and persist.

        This is the only write path for queued mutations and for clearing
        ``pending`` after an apply.
        """
        unknown = set(patch) - LOCAL_STATE_FIELDS
        if unknown:
            raise ValueError(f"Unknown local state field(s): {', '.join(sorted(unknown))}")

        record = self.read(record_id)
        record.local = dataclasses.replace(record.local, **patch)
        self._write(record)
        return record

    def mark_read(self, record_id: str) -> Record:
        """Snapshot tracked fields as the new diff baseline and stamp last_read."""
        record = self.read(record_id)
        return self.mutate_local_state(
            record_id,
            {
                "last_read": utc_now(),
                "previous": record.tracked_snapshot(),
                "changes_since_read": None,
            },
        )

    def clear_read(self, record_id: str) -> Record:
        """Revert a record to never-read."""
        return self.mutate_local_state(
            record_id, {"last_read": None, "previous": None, "changes_since_read": None}
        )

    def mark_all_read(self) -> int:
        """Mark every unread, or updated-since-read, record as read."""
        count = 0
        for record in self.iter_records():
            last_read = record.local.last_read
            if last_read and not is_after(record.updated, last_read):
                continue
            self.mark_read(record.id)
            count += 1
        return count

    # === Removal ===

    def delete(self, record_id: str) -> None:
        path = self.path_for(record_id)
        if not path.exists():
            raise NotFoundError(f"Record not found: {record_id}")
        path.unlink()

    def purge(self) -> int:
        """Remove every record file. Caches are left alone."""
        removed = 0
        for record_id in self.list_ids():
            try:
                self.path_for(record_id).unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove {record_id}: {e}")
        return removed
