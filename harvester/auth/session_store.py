"""
Session Store
=============
Loads the authenticated session snapshot captured by the bootstrap flow.

Responsibilities:
    1. Validate the saved ``storage_state`` (exists, readable, has cookies)
    2. Fail fast with a clear diagnostic when it is unusable
    3. Load it into new browser contexts
    4. Rewrite it after a resumed challenge (cookies may have been refreshed)

The harvester never logs in by itself; ``session_bootstrap`` produces the
snapshot interactively.

Usage::

    store = SessionStore("local/state-seloger.json")
    store.require()
    context = await store.new_context(browser, locale="fr-FR")
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from playwright.async_api import Browser, BrowserContext

from ..errors import SessionMissingError

logger = logging.getLogger(__name__)

_MISSING_MESSAGE = (
    "Storage state not found. Please run the session bootstrap first "
    "(python -m harvester --bootstrap)."
)


class SessionStore:
    """Persisted Playwright ``storage_state`` shared by every context."""

    def __init__(self, state_path: str):
        self.state_path = state_path

    # ── Validation ────────────────────────────────────────────────

    def has_valid_session(self) -> bool:
        """Check that the snapshot exists, parses and holds a cookie."""
        path = Path(self.state_path)
        if not path.exists():
            logger.info(f"[SESSION] No saved session file at {path}")
            return False

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning(f"[SESSION] Corrupt session file: {exc}")
            return False

        cookies = data.get("cookies", []) if isinstance(data, dict) else []
        if not cookies:
            logger.info("[SESSION] Session file has no cookies (stale)")
            return False

        logger.info(f"[SESSION] Valid session: {len(cookies)} cookies")
        return True

    def require(self) -> None:
        """Raise ``SessionMissingError`` unless the snapshot is usable."""
        if not self.has_valid_session():
            raise SessionMissingError(_MISSING_MESSAGE)

    # ── Context lifecycle ─────────────────────────────────────────

    async def new_context(self, browser: Browser, **ctx_kwargs) -> BrowserContext:
        """Create a context loaded from the snapshot."""
        context = await browser.new_context(storage_state=self.state_path, **ctx_kwargs)
        logger.info("[SESSION] Context created from saved session")
        return context

    async def save(self, context: BrowserContext) -> None:
        """Rewrite the snapshot from a live context."""
        path = Path(self.state_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        await context.storage_state(path=str(path))
        logger.info(f"[SESSION] Session saved to {path}")
