"""Reconciler: local -> remote.

Pushes every record's queued mutations to its remote host, then re-syncs
the record. Each record is handled in isolation; a failure on one is
reported and the pass moves on to the next.

Order per record: deletion (and stop), divergence check, status
transition, batched field update, comments, links, then re-fetch and
save. ``pending`` is cleared only after the re-fetched snapshot is on disk.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional

from issuetwin.config import Config, HostConfig
from issuetwin.protocols import (
    ConfigError,
    IssueTwinError,
    LinkNotFoundError,
    NoSuchTransitionError,
    RemoteService,
)
from issuetwin.storage.field_cache import FieldAliasCache
from issuetwin.storage.records import RecordStore
from issuetwin.sync_engine import fetch_enrichment
from issuetwin.types import (
    LINK_ADD,
    ApplyResult,
    ItemOutcome,
    LinkOp,
    PendingChange,
    Record,
    is_after,
)

logger = logging.getLogger(__name__)

# Fields the remote service expects as {"name": value}
NAMED_REFERENCE_FIELDS = frozenset({"assignee", "priority"})

# Failures that end one record's apply without stopping the pass
APPLY_ERRORS = (IssueTwinError, OSError, KeyError)

# Local names that always mean a specific remote field
BUILTIN_ALIASES = {"title": "summary"}


def find_transition(transitions: List[Dict[str, Any]], target: str) -> Optional[Dict[str, Any]]:
    """Match a target status against a transition's name or destination state."""
    wanted = target.strip().lower()
    for transition in transitions:
        name = str(transition.get("name") or "").lower()
        to_name = str((transition.get("to") or {}).get("name") or "").lower()
        if wanted in (name, to_name):
            return transition
    return None


def format_field_value(field_id: str, value: Any) -> Any:
    if field_id in NAMED_REFERENCE_FIELDS and isinstance(value, str):
        return {"name": value}
    return value


def find_link(links: List[Dict[str, Any]], counterpart: str, link_type: str) -> Optional[Dict[str, Any]]:
    """Existing link of ``link_type`` to ``counterpart``, in either direction."""
    wanted_type = link_type.lower()
    for link in links:
        if str((link.get("type") or {}).get("name") or "").lower() != wanted_type:
            continue
        keys = {
            (link.get("outwardIssue") or {}).get("key"),
            (link.get("inwardIssue") or {}).get("key"),
        }
        if counterpart in keys:
            return link
    return None


class Reconciler:
    """Drains pending changes to the remote service.

    Args:
        store: Record store holding the queued changes
        config: Configuration used to map record hosts to host settings
        client_for_host: Returns a RemoteService for a host
        field_aliases: Alias cache scoped to this invocation
    """

    def __init__(
        self,
        store: RecordStore,
        config: Config,
        client_for_host: Callable[[HostConfig], RemoteService],
        field_aliases: FieldAliasCache,
    ):
        self.store = store
        self.config = config
        self._client_for_host = client_for_host
        self.field_aliases = field_aliases
        self._clients: Dict[str, RemoteService] = {}

    def _client(self, host: HostConfig) -> RemoteService:
        if host.name not in self._clients:
            self._clients[host.name] = self._client_for_host(host)
        return self._clients[host.name]

    def _host_config(self, record: Record) -> HostConfig:
        host = self.config.host_for_url(record.host)
        if host is None:
            raise ConfigError(f"No configured host for {record.host}")
        return host

    def pending_records(self, host: Optional[str] = None) -> List[Record]:
        """Records with queued work, optionally limited to one configured host."""
        host_url = self.config.get_host(host).url if host else None
        records = []
        for record in self.store.iter_records():
            if not record.has_pending():
                continue
            if host_url and record.host.rstrip("/") != host_url:
                continue
            records.append(record)
        return sorted(records, key=lambda r: ((r.key or "").upper(), r.id))

    def apply(self, host: Optional[str] = None) -> ApplyResult:
        """Apply every record's pending changes.

        Args:
            host: Only apply records belonging to this configured host
        """
        result = ApplyResult()
        for record in self.pending_records(host):
            outcome = ItemOutcome(label=record.key)
            try:
                if record.local.deleted:
                    self.delete_record(record)
                    result.deleted += 1
                else:
                    outcome.warnings.extend(self.apply_record(record))
                    result.applied += 1
            except APPLY_ERRORS as e:
                logger.warning(f"Failed to apply {record.key}: {e}")
                outcome.ok = False
                outcome.error = str(e)
            result.outcomes.append(outcome)

        logger.info(
            f"Apply complete: applied={result.applied}, deleted={result.deleted}, "
            f"failed={len(result.failures)}"
        )
        return result

    # === Per record ===

    def delete_record(self, record: Record) -> None:
        """Delete remotely, then remove the local file."""
        client = self._client(self._host_config(record))
        client.delete_issue(record.key)
        self.store.delete(record.id)
        logger.debug(f"Deleted {record.key} remotely and locally")

    def apply_record(self, record: Record) -> List[str]:
        """Push one record's pending changes and re-sync it.

        Returns:
            Non-fatal warnings (divergence, enrichment).
        """
        host = self._host_config(record)
        client = self._client(host)
        key = record.key
        pending = copy.deepcopy(record.local.pending)
        warnings: List[str] = []

        remote = client.get_issue(key)
        remote_updated = (remote.get("fields") or {}).get("updated")
        if is_after(remote_updated, record.local.last_sync):
            message = (
                f"{key} was modified remotely since last sync "
                f"(remote {remote_updated}, local {record.local.last_sync})"
            )
            logger.warning(message)
            warnings.append(message)

        applied_comments = 0
        applied_links = 0
        transitioned = False
        try:
            if pending.transition:
                self._transition(client, key, pending.transition)
                transitioned = True

            if pending.fields:
                update = self._field_update(host, pending.fields)
                client.update_fields(key, update)
                logger.debug(f"Updated fields on {key}: {', '.join(update)}")

            for comment in pending.comments:
                client.add_comment(key, comment.text)
                applied_comments += 1

            for link in pending.links:
                self._apply_link(client, link)
                applied_links += 1

            # Re-sync; a failure here still drops the accepted parts from pending
            fresh = client.get_issue(key)
            comments, changelog, enrichment_warnings = fetch_enrichment(client, key)
            warnings.extend(enrichment_warnings)
            self.store.save(fresh, host.url, comments=comments, changelog=changelog)
            self.store.mutate_local_state(record.id, {"pending": PendingChange()})
        except APPLY_ERRORS:
            if transitioned or applied_comments or applied_links:
                self._retain_unapplied(record, pending, transitioned, applied_comments, applied_links)
            raise
        return warnings

    def _transition(self, client: RemoteService, key: str, target: str) -> None:
        transitions = client.get_transitions(key)
        match = find_transition(transitions, target)
        if match is None:
            raise NoSuchTransitionError(key, target, [str(t.get("name")) for t in transitions])
        client.do_transition(key, str(match["id"]))
        logger.debug(f"Transitioned {key} to {(match.get('to') or {}).get('name') or target}")

    def _field_update(self, host: HostConfig, fields: Dict[str, Any]) -> Dict[str, Any]:
        update: Dict[str, Any] = {}
        for alias, value in fields.items():
            field_id = BUILTIN_ALIASES.get(alias) or self.field_aliases.resolve(host.name, alias)
            update[field_id] = format_field_value(field_id, value)
        return update

    def _apply_link(self, client: RemoteService, link: LinkOp) -> None:
        if link.action == LINK_ADD:
            client.create_link(link.link_type, link.inward_key, link.outward_key)
            return

        existing = find_link(client.get_issue_links(link.inward_key), link.outward_key, link.link_type)
        if existing is None:
            raise LinkNotFoundError(
                f"No {link.link_type} link found between {link.inward_key} and {link.outward_key}"
            )
        client.delete_link(str(existing["id"]))

    def _retain_unapplied(
        self,
        record: Record,
        pending: PendingChange,
        transitioned: bool,
        applied_comments: int,
        applied_links: int,
    ) -> None:
        """Drop the parts of ``pending`` the remote already accepted."""
        remaining = PendingChange(
            fields=pending.fields,
            comments=pending.comments[applied_comments:],
            links=pending.links[applied_links:],
            transition=None if transitioned else pending.transition,
        )
        self.store.mutate_local_state(record.id, {"pending": remaining})
        logger.info(
            f"Kept unapplied changes on {record.key}: "
            f"{len(remaining.comments)} comment(s), {len(remaining.links)} link(s)"
        )
