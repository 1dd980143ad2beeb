"""IssueTwin class: main interface for one command invocation.

Wires configuration, the record store, cursor ledger, field alias cache,
change queue, sync engine and reconciler together. Nothing is shared
between instances; the CLI builds one per run.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from issuetwin.addressing import resolve
from issuetwin.change_queue import ChangeQueue
from issuetwin.config import Config, HostConfig, load_config
from issuetwin.diff import compute_plan
from issuetwin.protocols import RemoteService
from issuetwin.reconciler import Reconciler
from issuetwin.remote import JiraClient
from issuetwin.storage import CursorLedger, FieldAliasCache, RecordStore
from issuetwin.sync_engine import SyncEngine
from issuetwin.types import ApplyResult, Plan, PullResult, Record
from issuetwin.utils import get_cache_dir, get_issuetwin_home, get_storage_dir

logger = logging.getLogger(__name__)


class IssueTwin:
    """Local-first twin of a remote issue tracker.

    Args:
        home: issuetwin home directory (defaults to ``$ISSUETWIN_HOME`` or
            ``~/.issuetwin``)
        config: Preloaded configuration; read from ``home`` when omitted
        client_factory: Builds a RemoteService for a host; tests pass a fake
    """

    def __init__(
        self,
        home: Optional[Union[str, Path]] = None,
        config: Optional[Config] = None,
        client_factory: Optional[Callable[[HostConfig], RemoteService]] = None,
    ):
        self.home = get_issuetwin_home(home)
        self.config = config if config is not None else load_config(self.home)
        self._client_factory = client_factory or self._default_client
        self._clients: Dict[str, RemoteService] = {}

        self.store = RecordStore(get_storage_dir(self.home), named_fields=self.config.named_fields)
        self.ledger = CursorLedger(get_cache_dir(self.home))
        self.field_aliases = FieldAliasCache(
            get_cache_dir(self.home),
            {name: host.field_map for name, host in self.config.hosts.items()},
        )
        self.queue = ChangeQueue(self.store)
        self.engine = SyncEngine(self.store, self.ledger, self.client_for_host, config=self.config)
        self.reconciler = Reconciler(
            self.store, self.config, self.client_for_host, self.field_aliases
        )

    def _default_client(self, host: HostConfig) -> RemoteService:
        return JiraClient(host.url, self.config.require_token(host), api_path=host.api)

    def client_for_host(self, host: HostConfig) -> RemoteService:
        """One client per host for the lifetime of this instance."""
        if host.name not in self._clients:
            self._clients[host.name] = self._client_factory(host)
        return self._clients[host.name]

    def close(self) -> None:
        for client in self._clients.values():
            close = getattr(client, "close", None)
            if callable(close):
                close()
        self._clients.clear()

    # === Reads ===

    def resolve(self, value: str) -> Tuple[str, Record]:
        return resolve(value, self.store)

    def records(self, host: Optional[str] = None) -> List[Record]:
        """Stored records sorted by key, optionally for one configured host."""
        host_url = self.config.get_host(host).url if host else None
        records = [
            r for r in self.store.iter_records() if not host_url or r.host.rstrip("/") == host_url
        ]
        return sorted(records, key=lambda r: ((r.key or "").upper(), r.id))

    def plan(self, host: Optional[str] = None) -> Plan:
        host_url = self.config.get_host(host).url if host else None
        return compute_plan(self.store.iter_records(), host_url=host_url)

    # === Sync ===

    def pull(self, host: Optional[str] = None, full: bool = False) -> PullResult:
        """Pull one host, or every configured host when none is named."""
        hosts = [self.config.get_host(host)] if host else list(self.config.hosts.values())
        combined = PullResult()
        for host_config in hosts:
            result = self.engine.pull(host_config, full=full)
            combined.pulled += result.pulled
            combined.patterns += result.patterns
            combined.outcomes.extend(result.outcomes)
        return combined

    def pull_keys(self, inputs: Iterable[str], host: Optional[str] = None) -> PullResult:
        return self.engine.pull_keys(inputs, host=host)

    def search(
        self, query: str, host: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Run a query against the remote host without storing anything."""
        client = self.client_for_host(self.config.get_host(host))
        return client.search_all(query, limit=limit)

    def apply(self, host: Optional[str] = None) -> ApplyResult:
        return self.reconciler.apply(host=host)

    # === Maintenance ===

    def clean(self) -> int:
        """Remove every record and forget all cursors; the next pull is full."""
        removed = self.store.purge()
        self.ledger.reset()
        return removed

    def sync_fields(self, host: Optional[str] = None) -> Path:
        """Fetch a host's field catalogue for alias resolution."""
        host_config = self.config.get_host(host)
        client = self.client_for_host(host_config)
        fields = client.get_fields()
        return self.field_aliases.write_definitions(host_config.name, fields)
