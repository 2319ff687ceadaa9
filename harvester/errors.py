"""
Harvest Errors
==============
Run-level failures surfaced to the process boundary.

Per-item extraction failures and transient discovery failures never use
these types; they are contained (and logged) where they happen.
"""

from __future__ import annotations

from typing import Optional

# Process exit statuses
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ABORTED = 2


class HarvestError(Exception):
    """Base class for run-level harvesting failures."""

    exit_code = EXIT_FAILURE


class ConfigError(HarvestError):
    """Malformed invocation parameters (e.g. delay max below delay min)."""


class SessionMissingError(HarvestError):
    """The authenticated session snapshot is absent or unusable."""


class CollectionLoadError(HarvestError):
    """Initial navigation of one collection URL failed."""

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to load collection {url}{detail}")


class PauseAborted(HarvestError):
    """A human aborted a blocking (challenge) episode."""

    exit_code = EXIT_ABORTED

    def __init__(self, event=None):
        self.event = event
        super().__init__("Run aborted during an anti-automation pause")
