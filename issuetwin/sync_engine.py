"""Sync engine: remote -> local.

Runs each configured query pattern of a host, saves every fetched item
through the record store and advances that pattern's cursor. Failures are
isolated: a failed search skips one pattern, a failed save skips one item,
and a failed comment/history fetch is only a warning.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from issuetwin.addressing import is_remote_key, resolve
from issuetwin.config import Config, HostConfig
from issuetwin.protocols import (
    EnrichmentFailure,
    IssueTwinError,
    NotFoundError,
    RemoteError,
    RemoteService,
)
from issuetwin.storage.cursors import CursorLedger, pattern_key
from issuetwin.storage.records import RecordStore
from issuetwin.types import ItemOutcome, PullResult, parse_datetime, utc_now

logger = logging.getLogger(__name__)

ORDER_BY_RE = re.compile(r"(?:^|\s+)(ORDER\s+BY\s+[\s\S]+)$", re.IGNORECASE)

# Minute precision is all the search language accepts for ``updated``
CURSOR_FORMAT = "%Y-%m-%d %H:%M"


def build_incremental_query(base: str, cursor: Optional[str], full: bool = False) -> str:
    """Append an ``updated >= cursor`` predicate to ``base``.

    The predicate is skipped for a full refresh or when no cursor exists.
    A trailing ORDER BY clause is kept last.
    """
    base = base.strip()
    if full or not cursor:
        return base

    cursor_dt = parse_datetime(cursor)
    if cursor_dt is None:
        logger.warning(f"Ignoring unparseable cursor {cursor!r}; running a full query")
        return base
    since = cursor_dt.astimezone(timezone.utc).strftime(CURSOR_FORMAT)

    match = ORDER_BY_RE.search(base)
    order_by = match.group(1).strip() if match else ""
    filter_part = base[: match.start()].strip() if match else base

    predicate = f'updated >= "{since}"'
    query = f"({filter_part}) AND {predicate}" if filter_part else predicate
    if order_by:
        query += f" {order_by}"
    return query


def fetch_enrichment(
    client: RemoteService, key: str
) -> Tuple[Optional[List[Dict[str, Any]]], Optional[Dict[str, Any]], List[str]]:
    """Best-effort fetch of an item's comments and revision history.

    Returns:
        (comments, changelog, warnings). A part that could not be fetched
        is None and contributes one warning.
    """
    warnings: List[str] = []

    comments: Optional[List[Dict[str, Any]]] = None
    try:
        comments = client.get_comments(key)
    except RemoteError as e:
        failure = EnrichmentFailure(key, "comments", e)
        logger.warning(str(failure))
        warnings.append(str(failure))

    changelog: Optional[Dict[str, Any]] = None
    try:
        changelog = client.get_changelog(key)
    except RemoteError as e:
        failure = EnrichmentFailure(key, "changelog", e)
        logger.warning(str(failure))
        warnings.append(str(failure))

    return comments, changelog, warnings


def _updated_of(issue: Dict[str, Any]) -> Optional[datetime]:
    return parse_datetime((issue.get("fields") or {}).get("updated"))


class SyncEngine:
    """Pulls remote items into the record store.

    Args:
        store: Record store receiving the snapshots
        ledger: Cursor ledger for incremental pulls
        client_for_host: Returns a RemoteService for a host
        config: Configuration, needed to pick hosts for ``pull_keys``
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: CursorLedger,
        client_for_host: Callable[[HostConfig], RemoteService],
        config: Optional[Config] = None,
    ):
        self.store = store
        self.ledger = ledger
        self._client_for_host = client_for_host
        self.config = config

    # === Per item ===

    def _pull_issue(self, client: RemoteService, host: HostConfig, issue: Dict[str, Any]) -> ItemOutcome:
        key = issue.get("key") or "?"
        outcome = ItemOutcome(label=key)
        comments, changelog, warnings = fetch_enrichment(client, key)
        outcome.warnings.extend(warnings)
        try:
            self.store.save(issue, host.url, comments=comments, changelog=changelog)
        except (IssueTwinError, OSError, KeyError) as e:
            logger.warning(f"Failed to save {key}: {e}")
            outcome.ok = False
            outcome.error = str(e)
        return outcome

    # === Pattern pull ===

    def pull(self, host: HostConfig, full: bool = False) -> PullResult:
        """Run every sync pattern configured for ``host``.

        Args:
            host: Host to pull from
            full: Ignore cursors and re-fetch everything the patterns match
        """
        result = PullResult()
        if not host.sync:
            logger.info(f"{host.name}: no sync patterns configured")
            return result

        client = self._client_for_host(host)
        pull_started = utc_now()

        for pattern in host.sync:
            base = pattern.base_query()
            if not base:
                logger.warning(f"Skipping pattern with no query on {host.name}: {pattern}")
                result.outcomes.append(
                    ItemOutcome(label=f"{host.name} pattern", warnings=["pattern has no query"])
                )
                continue

            result.patterns += 1
            key = pattern_key(pattern.to_dict())
            cursor = None if full else self.ledger.get(host.name, key)
            query = build_incremental_query(base, cursor, full=full)
            logger.debug(f"{host.name}: searching {query!r} (limit={pattern.limit})")

            try:
                issues = client.search_all(query, limit=pattern.limit)
            except RemoteError as e:
                # Nothing was attempted, so the cursor stays where it was
                logger.warning(f"Search failed on {host.name} for {base!r}: {e}")
                result.outcomes.append(ItemOutcome(label=base, ok=False, error=str(e)))
                continue

            max_updated: Optional[datetime] = None
            max_updated_raw: Optional[str] = None
            for issue in issues:
                issue_updated = _updated_of(issue)
                if issue_updated and (max_updated is None or issue_updated > max_updated):
                    max_updated = issue_updated
                    max_updated_raw = issue["fields"]["updated"]

                outcome = self._pull_issue(client, host, issue)
                result.outcomes.append(outcome)
                if outcome.ok:
                    result.pulled += 1

            # Remote clock when items were seen; local start time only for an empty window
            stored = self.ledger.advance(
                host.name, key, max_updated_raw or pull_started, query=base
            )
            logger.debug(f"{host.name}: cursor for {key} now {stored}")

        logger.info(f"Pull from {host.name} complete: pulled={result.pulled}")
        return result

    # === Pull by key ===

    def _host_for(self, value: str, host_name: Optional[str]) -> Tuple[HostConfig, str]:
        """Pick the host and remote key for one ``pull_keys`` input."""
        if self.config is None:
            raise NotFoundError("No configuration available to choose a host")

        stored = None
        try:
            _, stored = resolve(value, self.store)
        except NotFoundError:
            if not is_remote_key(value):
                raise

        key = stored.key if stored else value.strip().upper()
        if host_name:
            return self.config.get_host(host_name), key
        if stored:
            host = self.config.host_for_url(stored.host)
            if host is None:
                raise NotFoundError(f"No configured host for {stored.host}")
            return host, key
        return self.config.get_host(None), key

    def pull_keys(self, inputs: Iterable[str], host: Optional[str] = None) -> PullResult:
        """Pull specific records by remote key or stored id.

        The cursor ledger is not touched.
        """
        result = PullResult()
        clients: Dict[str, RemoteService] = {}

        for value in inputs:
            try:
                host_config, key = self._host_for(value, host)
                if host_config.name not in clients:
                    clients[host_config.name] = self._client_for_host(host_config)
                client = clients[host_config.name]
                issue = client.get_issue(key)
            except IssueTwinError as e:
                logger.warning(f"Failed to pull {value}: {e}")
                result.outcomes.append(ItemOutcome(label=value, ok=False, error=str(e)))
                continue

            outcome = self._pull_issue(client, host_config, issue)
            result.outcomes.append(outcome)
            if outcome.ok:
                result.pulled += 1

        return result
