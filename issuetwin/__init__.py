"""
issuetwin - Local-first twin of a remote issue tracker.

Pull issues into Markdown files, edit them offline, apply the changes back.
"""

from .core import IssueTwin

try:
    from importlib.metadata import version

    __version__ = version("issuetwin")
except Exception:
    __version__ = "0.0.0"

__all__ = ["IssueTwin"]
