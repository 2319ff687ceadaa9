"""
Session handling for the harvester.

- ``SessionStore``: loads/validates/saves the storage-state snapshot
- ``bootstrap_session``: headed manual sign-in that produces the snapshot
"""

from .session_store import SessionStore
from .session_bootstrap import bootstrap_session

__all__ = [
    "SessionStore",
    "bootstrap_session",
]
