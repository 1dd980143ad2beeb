"""
issuetwin Protocol Definitions
==============================

Interface contracts between the sync core and its collaborators.

Components and their roles:
- Record store: one Markdown file per cached record, local state preserved.
- Sync engine:  remote -> local. Incremental, re-entrant.
- Reconciler:   local -> remote. Drains the pending queue, then re-syncs.
- Remote:       the issue tracker. Anything implementing RemoteService.

Error handling philosophy:
- Per-record and per-pattern work isolates RemoteError/EnrichmentFailure
  and continues with the remaining items
- NotFoundError, AmbiguousIdError, CrossHostLinkError,
  NoSuchTransitionError and LinkNotFoundError abort only the single
  operation that raised them
- Enrichment failures are warnings, never failures
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

# =============================================================================
# ERRORS
# =============================================================================


class IssueTwinError(Exception):
    """Base for all issuetwin errors."""

    pass


class ConfigError(IssueTwinError):
    """Raised when configuration or credentials are missing or invalid."""

    pass


class NotFoundError(IssueTwinError):
    """Identifier could not be resolved, or the record does not exist."""

    pass


class AmbiguousIdError(IssueTwinError):
    """Identifier prefix matches more than one stored record."""

    def __init__(self, prefix: str, candidates: Sequence[str]):
        self.prefix = prefix
        self.candidates = list(candidates)
        shown = ", ".join(self.candidates)
        super().__init__(f'Ambiguous ID "{prefix}" matches: {shown}')


class CrossHostLinkError(IssueTwinError):
    """Link requested between records on different remote hosts."""

    pass


class NoSuchTransitionError(IssueTwinError):
    """Requested status has no reachable workflow transition."""

    def __init__(self, key: str, target: str, available: Sequence[str]):
        self.key = key
        self.target = target
        self.available = list(available)
        super().__init__(
            f'Transition "{target}" not available for {key}. '
            f"Available: {', '.join(self.available) or '(none)'}"
        )


class LinkNotFoundError(IssueTwinError):
    """Link removal requested for a link that does not exist remotely."""

    pass


class RemoteError(IssueTwinError):
    """Non-success response (or transport failure) from the remote service.

    ``status_code`` is None when the request never produced a response.
    """

    def __init__(self, status_code: Optional[int], body: str = ""):
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"Remote request failed: {body}")
        else:
            super().__init__(f"Remote API error {status_code}: {body}")


class EnrichmentFailure(IssueTwinError):
    """Comments or history could not be fetched. Downgraded to a warning."""

    def __init__(self, key: str, kind: str, cause: Optional[Exception] = None):
        self.key = key
        self.kind = kind
        self.cause = cause
        super().__init__(f"Could not fetch {kind} for {key}" + (f": {cause}" if cause else ""))


# =============================================================================
# REMOTE SERVICE
# =============================================================================


@runtime_checkable
class RemoteService(Protocol):
    """What the sync core needs from the remote issue tracker.

    All calls are synchronous request/response. Implementations raise
    RemoteError for non-success responses; a 204 yields None.
    """

    base_url: str

    def get_issue(self, key: str) -> Dict[str, Any]:
        """Fetch one item by key."""
        ...

    def search_all(self, query: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch every item matching ``query``, paging, never exceeding ``limit``."""
        ...

    def get_comments(self, key: str) -> List[Dict[str, Any]]:
        ...

    def get_changelog(self, key: str) -> Dict[str, Any]:
        """Revision history as ``{"histories": [...]}``."""
        ...

    def update_fields(self, key: str, fields: Dict[str, Any]) -> None:
        ...

    def get_transitions(self, key: str) -> List[Dict[str, Any]]:
        ...

    def do_transition(self, key: str, transition_id: str) -> None:
        ...

    def add_comment(self, key: str, body: str) -> Dict[str, Any]:
        ...

    def create_link(self, link_type: str, inward_key: str, outward_key: str) -> None:
        ...

    def get_issue_links(self, key: str) -> List[Dict[str, Any]]:
        ...

    def delete_link(self, link_id: str) -> None:
        ...

    def delete_issue(self, key: str) -> None:
        ...

    def get_fields(self) -> List[Dict[str, Any]]:
        """Field catalogue, used only by ``field sync``."""
        ...
