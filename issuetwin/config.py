"""Configuration loading for issuetwin.

Reads ``config.yaml`` (hosts, sync patterns, field aliases, display options)
and ``.tokens.yaml`` (per-host credentials) from the issuetwin home.
Nothing is cached at module level; callers hold the returned Config for
the duration of one command.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml

from issuetwin.protocols import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_API_PATH = "/rest/api/2"
PLACEHOLDER_TOKEN = "YOUR_PAT_TOKEN_HERE"

# Fields reported individually in change summaries unless configured otherwise
DEFAULT_NAMED_FIELDS = (
    "assignee",
    "status",
    "priority",
    "Story Points",
    "timeestimate",
    "timeoriginalestimate",
    "duedate",
    "Target start",
    "Target end",
)


def validate_host_url(url: str, *, allow_localhost_http: bool = True) -> Optional[str]:
    """Validate a host URL before sending a bearer token to it.

    Rejects non-http/https schemes, URLs with no host, and remote HTTP
    endpoints (only localhost/127.0.0.1 are allowed over plaintext HTTP).

    Returns:
        The URL without a trailing slash if valid, or ``None`` if rejected.
    """
    if not url:
        return None

    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid host url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid host url; missing host.")
        return None
    if parsed.scheme == "http":
        if not allow_localhost_http:
            logger.warning("HTTP not allowed in this context.")
            return None
        host = parsed.hostname or ""
        if host not in {"localhost", "127.0.0.1"}:
            logger.warning("Refusing non-local http host url for security.")
            return None
    return url.rstrip("/")


@dataclass
class SyncPattern:
    """One configured query pattern: optional base filter plus optional cap."""

    jql: Optional[str] = None
    project: Optional[str] = None
    limit: Optional[int] = None

    def base_query(self) -> Optional[str]:
        parts = []
        if self.project:
            parts.append(f"project = {self.project}")
        if self.jql:
            parts.append(self.jql)
        return " AND ".join(parts) if parts else None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in (("jql", self.jql), ("project", self.project), ("limit", self.limit)) if v}

    @classmethod
    def from_dict(cls, data: Any) -> "SyncPattern":
        if isinstance(data, str):
            return cls(jql=data)
        data = data or {}
        limit = data.get("limit")
        return cls(
            jql=data.get("jql"),
            project=data.get("project"),
            limit=int(limit) if limit else None,
        )


@dataclass
class HostConfig:
    """Connection and sync settings for one remote host."""

    name: str
    url: str
    api: str = DEFAULT_API_PATH
    token: Optional[str] = None
    sync: List[SyncPattern] = field(default_factory=list)
    field_map: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Config:
    """Parsed configuration for one invocation."""

    home: Path
    hosts: Dict[str, HostConfig] = field(default_factory=dict)
    default_host: Optional[str] = None
    named_fields: List[str] = field(default_factory=lambda: list(DEFAULT_NAMED_FIELDS))
    tracked_labels: List[str] = field(default_factory=list)

    def get_host(self, name: Optional[str] = None) -> HostConfig:
        """Look up a host by name, falling back to the default host."""
        name = name or self.default_host
        if not name and len(self.hosts) == 1:
            name = next(iter(self.hosts))
        host = self.hosts.get(name) if name else None
        if host is None:
            available = ", ".join(self.hosts) or "(none)"
            raise ConfigError(f"Unknown host: {name}. Available: {available}")
        return host

    def host_for_url(self, url: str) -> Optional[HostConfig]:
        """Find the configured host whose base URL matches ``url``."""
        target = (url or "").rstrip("/")
        for host in self.hosts.values():
            if host.url == target:
                return host
        return None

    def require_token(self, host: HostConfig) -> str:
        if not host.token or host.token == PLACEHOLDER_TOKEN:
            raise ConfigError(f"No valid token configured for host: {host.name}")
        return host.token


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    return data or {}


def load_config(home: Path) -> Config:
    """Load ``config.yaml`` and ``.tokens.yaml`` from ``home``.

    A missing ``config.yaml`` yields an empty configuration (local-only
    commands still work); a missing tokens file leaves tokens unset.
    Environment variables ``ISSUETWIN_TOKEN_<NAME>`` override file tokens.
    """
    config_path = home / "config.yaml"
    tokens_path = home / ".tokens.yaml"

    raw = _load_yaml(config_path) if config_path.exists() else {}
    tokens = _load_yaml(tokens_path) if tokens_path.exists() else {}
    token_hosts = tokens.get("hosts") or {}

    hosts: Dict[str, HostConfig] = {}
    for name, host_raw in (raw.get("hosts") or {}).items():
        host_raw = host_raw or {}
        url = validate_host_url(host_raw.get("url", ""))
        if not url:
            raise ConfigError(f"Invalid or missing url for host: {name}")

        env_key = "ISSUETWIN_TOKEN_" + "".join(c if c.isalnum() else "_" for c in name).upper()
        token = os.environ.get(env_key) or (token_hosts.get(name) or {}).get("token")

        hosts[name] = HostConfig(
            name=name,
            url=url,
            api=host_raw.get("api") or DEFAULT_API_PATH,
            token=token,
            sync=[SyncPattern.from_dict(p) for p in host_raw.get("sync") or []],
            field_map=dict(host_raw.get("field_map") or {}),
        )

    display = raw.get("display") or {}
    config = Config(
        home=home,
        hosts=hosts,
        default_host=raw.get("default_host"),
        tracked_labels=list(display.get("tracked_labels") or []),
    )
    if display.get("named_fields"):
        config.named_fields = list(display["named_fields"])

    if config.default_host and config.default_host not in hosts:
        logger.warning(f"default_host {config.default_host!r} is not a configured host")

    return config
