"""
Link Discovery Engine
=====================
Collects the deduplicated set of listing references from a favorites
(collection) page whose items are rendered lazily, possibly inside an
embedded frame.

Flow per collection URL:
    1. Load the page (pause-guarded), wait for network idle and ``body``
    2. Dismiss the cookie banner
    3. Pick the collection scope: an embedded frame whose URL looks like
       the favorites app or whose DOM already holds item links; polled
       for 30s every 500ms, falling back to the top-level page
    4. Reveal loop: scan links → click "load more" if visible, else
       scroll the scope ~90% of a viewport → settle → repeat, until the
       reference set has not grown for ``idle_ceiling`` iterations
    5. Nothing found and no scope matched: rescan every frame

DOM-query and click failures inside the loop count as "no progress";
only the initial navigation failure escapes (as ``CollectionLoadError``).
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from .browser import accept_cookies_if_present, first_visible, wait_for_network_idle
from .errors import CollectionLoadError, PauseAborted
from .models import ItemReference
from .run_config import DelayRange, HarvestRunConfig
from .utils import canonicalize

logger = logging.getLogger(__name__)

ITEM_LINK_SELECTOR = 'a[href*="/annonces/"]'

COLLECTION_URL_RE = re.compile(r"mes-favoris|mes-recherches|favoris", re.IGNORECASE)

LOAD_MORE_SELECTORS = [
    'button:has-text("Afficher plus")',
    'button:has-text("Voir plus")',
    'button:has-text("Charger plus")',
    'button[data-testid="sl-load-more"]',
]

_HAS_ITEMS_JS = """
() => Boolean(document.querySelector(
    '[data-testid="favorites-list"], [data-testid="fav-listing"], a[href*="/annonces/"]'
))
"""

_COLLECT_LINKS_JS = """
(selector) => Array.from(document.querySelectorAll(selector)).map((a) => a.href)
"""

_SCROLL_JS = """
() => {
    const el = document.scrollingElement || document.documentElement || document.body;
    const nextTop = Math.min(el.scrollHeight, el.scrollTop + el.clientHeight * 0.9);
    el.scrollTo({ top: nextTop, behavior: 'smooth' });
}
"""


# ---------------------------------------------------------------------------
# Per-scope state
# ---------------------------------------------------------------------------

@dataclass
class DiscoveryState:
    """Running reference set of ONE scope's reveal loop."""
    references: Dict[ItemReference, None] = field(default_factory=dict)
    size: int = 0
    idle_iterations: int = 0
    iterations: int = 0

    def absorb(self, hrefs: Iterable[str], base_url: str = None) -> bool:
        """Add canonicalized links; returns True if the set grew."""
        self.iterations += 1
        for href in hrefs:
            ref = canonicalize(href, base_url)
            if ref is not None:
                self.references.setdefault(ref, None)

        if len(self.references) > self.size:
            self.size = len(self.references)
            self.idle_iterations = 0
            return True
        self.idle_iterations += 1
        return False

    def converged(self, idle_ceiling: int) -> bool:
        return self.idle_iterations >= idle_ceiling


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class LinkDiscoveryEngine:
    """
    Discovers item references on collection pages.

    Usage::

        engine = LinkDiscoveryEngine(context, cfg, pause=pause)
        refs = await engine.discover_references(url, cfg.delay_range)
    """

    def __init__(self, context, cfg: HarvestRunConfig, pause=None, sleep=asyncio.sleep):
        self._context = context
        self.cfg = cfg
        self._pause = pause
        self._sleep = sleep

    async def discover_references(
        self, collection_url: str, delay: Optional[DelayRange] = None
    ) -> Set[ItemReference]:
        delay = delay or self.cfg.delay_range
        logger.info(f"[DISCOVERY] Collecting links from {collection_url}")

        page = await self._context.new_page()
        try:
            try:
                await self._load(page, collection_url)
            except PauseAborted:
                raise
            except Exception as e:
                raise CollectionLoadError(collection_url, e) from e

            await accept_cookies_if_present(
                page, self.cfg.visible_probe_timeout_ms, self.cfg.network_idle_timeout_ms
            )

            scope = await self.select_scope(page)
            scopes = [scope] if scope is not None else [page]

            collected: Set[ItemReference] = set()
            for s in scopes:
                collected |= await self.collect_in_scope(s, delay)

            if not collected and scope is None:
                logger.info("[SCOPE] Nothing found in page scope, rescanning every frame")
                for frame in list(page.frames):
                    collected |= await self.collect_in_scope(frame, delay)

            logger.info(f"[DISCOVERY] {len(collected)} reference(s) from {collection_url}")
            return collected
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"[DISCOVERY] Page close: {e}")

    # ------------------------------------------------------------------
    # Loading & scope selection
    # ------------------------------------------------------------------

    async def _load(self, page, url: str) -> None:
        async def _goto():
            await page.goto(url, wait_until="networkidle")

        if self._pause is not None:
            await self._pause.guarded(_goto, label=url)
        else:
            await _goto()
        await wait_for_network_idle(page, self.cfg.network_idle_timeout_ms)
        await page.wait_for_selector("body", timeout=self.cfg.selector_timeout_ms)

    async def select_scope(self, page):
        """
        Scope hosting the collection, or None if none detected in time.

        Only embedded frames are candidates, first by URL, then by item
        markers.  The top-level document is the fallback once the polling
        window has elapsed.
        """
        main = page.main_frame
        deadline = time.monotonic() + self.cfg.scope_detect_timeout_s
        while True:
            children = [f for f in list(page.frames) if f is not main]
            for frame in children:
                frame_url = frame.url or ""
                if COLLECTION_URL_RE.search(frame_url):
                    logger.info(f"[SCOPE] Collection frame by URL: {frame_url[:80]}")
                    return frame
            for frame in children:
                if await self._has_items(frame):
                    logger.info(f"[SCOPE] Collection frame by markers: {(frame.url or '')[:80]}")
                    return frame
            if time.monotonic() >= deadline:
                logger.info("[SCOPE] No collection frame detected, using top-level page")
                return None
            await self._sleep(self.cfg.scope_detect_interval_s)

    @staticmethod
    async def _has_items(frame) -> bool:
        try:
            return bool(await frame.evaluate(_HAS_ITEMS_JS))
        except Exception as e:
            # cross-origin or detached frames
            logger.debug(f"[SCOPE] Frame marker check failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Reveal loop
    # ------------------------------------------------------------------

    async def collect_in_scope(self, scope, delay: DelayRange) -> Set[ItemReference]:
        """Scan/reveal/scroll until the set stops growing."""
        try:
            await scope.wait_for_selector(ITEM_LINK_SELECTOR, timeout=self.cfg.selector_timeout_ms)
        except Exception as e:
            logger.debug(f"[DISCOVERY] No item link appeared yet: {e}")

        state = DiscoveryState()
        base_url = getattr(scope, "url", None) or None

        while not state.converged(self.cfg.idle_ceiling):
            hrefs = await self._gather_links(scope)
            if state.absorb(hrefs, base_url):
                logger.debug(f"[DISCOVERY] {state.size} reference(s) after {state.iterations} iteration(s)")

            button = await first_visible(
                scope, LOAD_MORE_SELECTORS, self.cfg.visible_probe_timeout_ms
            )
            if button is not None:
                try:
                    await button.click()
                except Exception as e:
                    logger.debug(f"[DISCOVERY] Load-more click failed: {e}")
                await wait_for_network_idle(scope, self.cfg.network_idle_timeout_ms)
                await self._sleep(delay.draw_seconds())
                await self._checkpoint()
                continue

            try:
                await scope.evaluate(_SCROLL_JS)
            except Exception as e:
                logger.debug(f"[DISCOVERY] Scroll failed: {e}")
            await self._sleep(delay.draw_seconds())
            await wait_for_network_idle(scope, self.cfg.network_idle_timeout_ms)
            await self._checkpoint()

        logger.info(
            f"[DISCOVERY] Scope converged: {state.size} reference(s), "
            f"{state.iterations} iteration(s)"
        )
        return set(state.references)

    async def _gather_links(self, scope) -> List[str]:
        try:
            hrefs = await scope.evaluate(_COLLECT_LINKS_JS, ITEM_LINK_SELECTOR)
        except Exception as e:
            logger.debug(f"[DISCOVERY] Link scan failed: {e}")
            return []
        return [h for h in (hrefs or []) if isinstance(h, str)]

    async def _checkpoint(self) -> None:
        if self._pause is not None:
            await self._pause.checkpoint()
