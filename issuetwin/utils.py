"""Filesystem helpers shared across issuetwin."""

import os
from pathlib import Path
from typing import Optional, Union


def get_issuetwin_home(override: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the issuetwin home directory.

    Priority: explicit override, ``ISSUETWIN_HOME``, then ``~/.issuetwin``.
    """
    if override:
        return Path(override).expanduser()
    env_home = os.environ.get("ISSUETWIN_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path.home() / ".issuetwin"


def get_storage_dir(home: Path) -> Path:
    return home / "storage"


def get_cache_dir(home: Path) -> Path:
    return home / "storage" / "_cache"
