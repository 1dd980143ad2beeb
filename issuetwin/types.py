"""
Shared record types for issuetwin.

All cached-record dataclasses live here. They are the shared vocabulary
between the record store, the change queue, the sync engine and the
reconciler. The store persists them; the engine fills them; the reconciler
drains them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp, local or remote-formatted.

    Remote timestamps look like ``2026-01-19T09:00:00.000+0000``, which
    ``datetime.fromisoformat`` does not accept on every interpreter, so
    dateutil does the parsing. Naive values are taken as UTC.
    """
    if not s:
        return None
    if isinstance(s, datetime):
        parsed = s
    else:
        try:
            parsed = date_parser.isoparse(str(s))
        except (TypeError, ValueError, OverflowError):
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_after(a: Optional[str], b: Optional[str]) -> bool:
    """True when timestamp ``a`` is strictly later than ``b``."""
    da, db = parse_datetime(a), parse_datetime(b)
    if da is None or db is None:
        return False
    return da > db


# Link actions
LINK_ADD = "add"
LINK_REMOVE = "remove"

# Remote fields captured into LocalState.previous by mark-read
TRACKED_FIELDS = (
    "status",
    "assignee",
    "priority",
    "title",
    "labels",
    "description",
    "comment_count",
)


# === Pending mutations ===


@dataclass
class QueuedComment:
    """A comment waiting to be submitted."""

    text: str
    queued_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "queued_at": self.queued_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedComment":
        return cls(text=data.get("text", ""), queued_at=data.get("queued_at") or "")


@dataclass
class LinkOp:
    """A queued link add/remove between two records on the same host."""

    action: str  # 'add' or 'remove'
    link_type: str
    inward_key: str
    outward_key: str
    queued_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "type": self.link_type,
            "inward_key": self.inward_key,
            "outward_key": self.outward_key,
            "queued_at": self.queued_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LinkOp":
        return cls(
            action=data.get("action", LINK_ADD),
            link_type=data.get("type", "Relates"),
            inward_key=data.get("inward_key", ""),
            outward_key=data.get("outward_key", ""),
            queued_at=data.get("queued_at") or "",
        )


@dataclass
class PendingChange:
    """Queued, not-yet-applied local mutations for one record.

    Field edits, comments and links are independent; ``transition`` holds a
    requested target status, which the reconciler resolves to a workflow
    transition rather than a field write.
    """

    fields: Dict[str, Any] = field(default_factory=dict)
    comments: List[QueuedComment] = field(default_factory=list)
    links: List[LinkOp] = field(default_factory=list)
    transition: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.fields or self.comments or self.links or self.transition)

    def to_dict(self) -> Optional[Dict[str, Any]]:
        if self.is_empty():
            return None
        data: Dict[str, Any] = {}
        if self.fields:
            data["fields"] = dict(self.fields)
        if self.transition:
            data["transition"] = self.transition
        if self.comments:
            data["comments"] = [c.to_dict() for c in self.comments]
        if self.links:
            data["links"] = [link.to_dict() for link in self.links]
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PendingChange":
        if not data:
            return cls()
        return cls(
            fields=dict(data.get("fields") or {}),
            comments=[QueuedComment.from_dict(c) for c in data.get("comments") or []],
            links=[LinkOp.from_dict(link) for link in data.get("links") or []],
            transition=data.get("transition"),
        )


# === Remote change summary ===


@dataclass
class ChangeSummary:
    """Remote-side changes since the user last read a record."""

    title: bool = False
    description: bool = False
    named_fields: List[str] = field(default_factory=list)
    labels_added: List[str] = field(default_factory=list)
    labels_removed: List[str] = field(default_factory=list)
    components_added: List[str] = field(default_factory=list)
    components_removed: List[str] = field(default_factory=list)
    other_fields: int = 0
    comments: int = 0

    def is_empty(self) -> bool:
        return not (
            self.title
            or self.description
            or self.named_fields
            or self.labels_added
            or self.labels_removed
            or self.components_added
            or self.components_removed
            or self.other_fields
            or self.comments
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "named_fields": list(self.named_fields),
            "labels_added": list(self.labels_added),
            "labels_removed": list(self.labels_removed),
            "components_added": list(self.components_added),
            "components_removed": list(self.components_removed),
            "other_fields": self.other_fields,
            "comments": self.comments,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ChangeSummary"]:
        if not data:
            return None
        return cls(
            title=bool(data.get("title")),
            description=bool(data.get("description")),
            named_fields=list(data.get("named_fields") or []),
            labels_added=list(data.get("labels_added") or []),
            labels_removed=list(data.get("labels_removed") or []),
            components_added=list(data.get("components_added") or []),
            components_removed=list(data.get("components_removed") or []),
            other_fields=int(data.get("other_fields") or 0),
            comments=int(data.get("comments") or 0),
        )


# === Local state ===


@dataclass
class LocalState:
    """The part of a record that a pull never overwrites."""

    last_read: Optional[str] = None
    last_sync: Optional[str] = None
    previous: Optional[Dict[str, Any]] = None
    pending: PendingChange = field(default_factory=PendingChange)
    deleted: Optional[str] = None
    changes_since_read: Optional[ChangeSummary] = None
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_read": self.last_read,
            "last_sync": self.last_sync,
            "previous": self.previous,
            "pending": self.pending.to_dict(),
            "deleted": self.deleted,
            "changes_since_read": (
                self.changes_since_read.to_dict() if self.changes_since_read else None
            ),
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LocalState":
        data = data or {}
        return cls(
            last_read=data.get("last_read"),
            last_sync=data.get("last_sync"),
            previous=data.get("previous"),
            pending=PendingChange.from_dict(data.get("pending")),
            deleted=data.get("deleted"),
            changes_since_read=ChangeSummary.from_dict(data.get("changes_since_read")),
            tags=list(data.get("tags") or []),
        )


# === Record ===


@dataclass
class Record:
    """Cached representation of one remote item.

    Attributes:
        id: 40-hex content id derived from host and key
        key: Remote key (e.g. ``SRE-123``)
        host: Base URL of the remote host
        local: LocalState, preserved across pulls
        body: Rendered Markdown body (presentation only)
    """

    id: str
    key: str
    host: str
    remote_id: Optional[str] = None
    title: Optional[str] = None
    status: Optional[Dict[str, Any]] = None
    priority: Optional[Dict[str, Any]] = None
    issue_type: Optional[Dict[str, Any]] = None
    assignee: Optional[Dict[str, Any]] = None
    reporter: Optional[Dict[str, Any]] = None
    project: Optional[Dict[str, Any]] = None
    created: Optional[str] = None
    updated: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    components: List[Dict[str, Any]] = field(default_factory=list)
    description: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    issue_links: List[Dict[str, Any]] = field(default_factory=list)
    comments: List[Dict[str, Any]] = field(default_factory=list)
    web_link: Optional[str] = None
    local: LocalState = field(default_factory=LocalState)
    body: str = ""

    @property
    def status_name(self) -> Optional[str]:
        return (self.status or {}).get("name")

    @property
    def priority_name(self) -> Optional[str]:
        return (self.priority or {}).get("name")

    @property
    def assignee_name(self) -> Optional[str]:
        assignee = self.assignee or {}
        return assignee.get("displayName") or assignee.get("name")

    def has_pending(self) -> bool:
        """Whether the reconciler has anything to do for this record."""
        return bool(self.local.deleted) or not self.local.pending.is_empty()

    def tracked_snapshot(self) -> Dict[str, Any]:
        """Snapshot of the tracked remote fields, used as the diff baseline."""
        return {
            "status": self.status_name,
            "assignee": self.assignee_name,
            "priority": self.priority_name,
            "title": self.title,
            "labels": sorted(self.labels),
            "description": self.description,
            "comment_count": len(self.comments),
        }

    def snapshot_dict(self) -> Dict[str, Any]:
        """Remote-authoritative fields, in frontmatter order."""
        return {
            "id": self.id,
            "key": self.key,
            "host": self.host,
            "remote_id": self.remote_id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "issue_type": self.issue_type,
            "assignee": self.assignee,
            "reporter": self.reporter,
            "project": self.project,
            "created": self.created,
            "updated": self.updated,
            "labels": list(self.labels),
            "components": list(self.components),
            "description": self.description,
            "attachments": list(self.attachments),
            "issue_links": list(self.issue_links),
            "comments": list(self.comments),
            "web_link": self.web_link,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.snapshot_dict()
        data["local"] = self.local.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], body: str = "") -> "Record":
        return cls(
            id=data["id"],
            key=data.get("key", ""),
            host=data.get("host", ""),
            remote_id=data.get("remote_id"),
            title=data.get("title"),
            status=data.get("status"),
            priority=data.get("priority"),
            issue_type=data.get("issue_type"),
            assignee=data.get("assignee"),
            reporter=data.get("reporter"),
            project=data.get("project"),
            created=data.get("created"),
            updated=data.get("updated"),
            labels=list(data.get("labels") or []),
            components=list(data.get("components") or []),
            description=data.get("description"),
            attachments=list(data.get("attachments") or []),
            issue_links=list(data.get("issue_links") or []),
            comments=list(data.get("comments") or []),
            web_link=data.get("web_link"),
            local=LocalState.from_dict(data.get("local")),
            body=body,
        )


# === Plan ===


@dataclass
class FieldChange:
    """One field-level before/after pair in a plan."""

    field: str
    before: Any
    after: Any


@dataclass
class PlanEntry:
    """Planned work for one record."""

    record_id: str
    key: str
    host: str
    delete: bool = False
    field_changes: List[FieldChange] = field(default_factory=list)
    comments: List[str] = field(default_factory=list)  # previews
    links: List[LinkOp] = field(default_factory=list)

    @property
    def short_id(self) -> str:
        return self.record_id[:6]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.record_id,
            "short_id": self.short_id,
            "key": self.key,
            "host": self.host,
            "delete": self.delete,
            "fields": [
                {"field": c.field, "before": c.before, "after": c.after}
                for c in self.field_changes
            ],
            "comments": list(self.comments),
            "links": [link.to_dict() for link in self.links],
        }


@dataclass
class PlanSummary:
    """Aggregate counts across a plan."""

    records: int = 0
    field_updates: int = 0
    comments: int = 0
    link_changes: int = 0
    deletions: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "records": self.records,
            "field_updates": self.field_updates,
            "comments": self.comments,
            "link_changes": self.link_changes,
            "deletions": self.deletions,
        }


@dataclass
class Plan:
    """Structured plan plus its aggregate summary."""

    entries: List[PlanEntry] = field(default_factory=list)
    summary: PlanSummary = field(default_factory=PlanSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "summary": self.summary.to_dict(),
        }


# === Operation results ===


@dataclass
class ItemOutcome:
    """Result of processing one record or pattern."""

    label: str  # key, id or pattern description
    ok: bool = True
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class PullResult:
    """Result of a pull."""

    pulled: int = 0
    patterns: int = 0
    outcomes: List[ItemOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def warnings(self) -> List[str]:
        return [w for o in self.outcomes for w in o.warnings]

    @property
    def success(self) -> bool:
        return len(self.failures) == 0


@dataclass
class ApplyResult:
    """Result of an apply pass."""

    applied: int = 0
    deleted: int = 0
    outcomes: List[ItemOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def warnings(self) -> List[str]:
        return [w for o in self.outcomes for w in o.warnings]

    @property
    def success(self) -> bool:
        return len(self.failures) == 0
