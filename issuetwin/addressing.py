"""Record addressing: content ids, short ids and identifier resolution.

A record's id is ``sha1(host + ":" + key)``. Users may refer to a record by
its full id, a git-style prefix of it, or by its remote key (``SRE-123``).
"""

import hashlib
import logging
import re
from typing import TYPE_CHECKING, List, Tuple

from issuetwin.protocols import AmbiguousIdError, NotFoundError

if TYPE_CHECKING:
    from issuetwin.storage.records import RecordStore
    from issuetwin.types import Record

logger = logging.getLogger(__name__)

SHORT_ID_LENGTH = 6
# Candidates listed in an ambiguity error are at least this long
MIN_DISAMBIGUATION_LENGTH = 8

REMOTE_KEY_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*-\d+$")


def identify(host: str, key: str) -> str:
    """Derive the stable 40-hex content id for a remote record."""
    return hashlib.sha1(f"{host}:{key}".encode("utf-8")).hexdigest()


def short_id(full_id: str) -> str:
    """Presentation form of an id."""
    return full_id[:SHORT_ID_LENGTH]


def is_remote_key(value: str) -> bool:
    return bool(REMOTE_KEY_RE.match(value.strip()))


def disambiguating_prefixes(ids: List[str], typed: str = "") -> List[str]:
    """Shortest prefixes (never under MIN_DISAMBIGUATION_LENGTH) that tell ``ids`` apart."""
    length = max(MIN_DISAMBIGUATION_LENGTH, len(typed) + 1)
    longest = max((len(i) for i in ids), default=0)
    while length < longest and len({i[:length] for i in ids}) < len(ids):
        length += 1
    return sorted(i[:length] for i in ids)


def resolve(value: str, store: "RecordStore") -> Tuple[str, "Record"]:
    """Resolve a full id, id prefix or remote key to a stored record.

    Raises:
        NotFoundError: nothing matches
        AmbiguousIdError: the prefix matches several records
    """
    cleaned = value.strip()
    if cleaned.endswith(".md"):
        cleaned = cleaned[: -len(".md")]
    if not cleaned:
        raise NotFoundError("Empty identifier")

    if is_remote_key(cleaned):
        wanted = cleaned.upper()
        for record in store.iter_records():
            if (record.key or "").upper() == wanted:
                return record.id, record
        raise NotFoundError(f"Record not found: {wanted}")

    prefix = cleaned.lower()
    matches = [record_id for record_id in store.list_ids() if record_id.lower().startswith(prefix)]
    if not matches:
        raise NotFoundError(f"No record found matching: {prefix}")
    if len(matches) > 1:
        raise AmbiguousIdError(prefix, disambiguating_prefixes(matches, prefix))

    record_id = matches[0]
    return record_id, store.read(record_id)
