"""
Browser Host
============
Launches Chromium and builds the single authenticated context shared by
link discovery and every extraction worker.

- Automation flags disabled, client-hint headers set
- Navigator masking init script (webdriver, chrome, permissions, locale)
- Cookie-consent dismissal helper for collection pages
- Orderly shutdown tolerant of already-closed targets
"""

from __future__ import annotations

import json
import logging
from typing import Iterable, Optional, Tuple

from playwright.async_api import async_playwright, Browser, BrowserContext, Playwright

from .auth.session_store import SessionStore
from .run_config import HarvestRunConfig

logger = logging.getLogger(__name__)

CHROME_ARGS = [
    '--disable-blink-features=AutomationControlled',
    '--disable-dev-shm-usage',
]

EXTRA_HEADERS = {
    'sec-ch-ua': '"Google Chrome";v="123", "Chromium";v="123", "Not-A.Brand";v="99"',
    'sec-ch-ua-platform': '"Windows"',
    'sec-ch-ua-mobile': '?0',
    'accept-language': 'fr-FR,fr;q=0.9,en-US;q=0.8,en;q=0.7',
}

CONSENT_SELECTORS = [
    'button:has-text("Tout accepter")',
    'button:has-text("Accepter")',
    '#didomi-notice-agree-button',
    'button[data-testid="accept-cookies"]',
]

# Runs in every page/frame before site scripts
_STEALTH_JS = """
(ua) => {
    try {
        Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    } catch (e) {}
    window.chrome = window.chrome || { runtime: {} };
    if (!('permissions' in navigator)) {
        navigator.permissions = { query: () => Promise.resolve({ state: 'granted' }) };
    }
    try {
        Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
        Object.defineProperty(navigator, 'language', { get: () => 'fr-FR' });
        Object.defineProperty(navigator, 'languages', { get: () => ['fr-FR', 'fr', 'en-US', 'en'] });
        Object.defineProperty(navigator, 'userAgent', { get: () => ua });
    } catch (e) {}
}
"""


async def open_browser(
    cfg: HarvestRunConfig, store: SessionStore
) -> Tuple[Playwright, Browser, BrowserContext]:
    """Start Playwright, launch Chromium and create the shared context."""
    pw = await async_playwright().start()
    browser = await pw.chromium.launch(headless=cfg.headless, args=CHROME_ARGS)
    context = await store.new_context(
        browser,
        user_agent=cfg.user_agent,
        viewport=dict(cfg.viewport),
        locale=cfg.locale,
        timezone_id=cfg.timezone_id,
        java_script_enabled=True,
        extra_http_headers=dict(EXTRA_HEADERS),
    )
    await apply_stealth(context, cfg.user_agent, cfg.navigation_timeout_ms)
    logger.info(
        f"Playwright browser initialized (headless={cfg.headless}, "
        f"locale={cfg.locale})"
    )
    return pw, browser, context


async def apply_stealth(context: BrowserContext, user_agent: str, timeout_ms: int) -> None:
    # Init scripts take no arguments; the UA is inlined as a JS string literal
    await context.add_init_script(script=f"({_STEALTH_JS})({json.dumps(user_agent)});")
    context.set_default_timeout(timeout_ms)


async def close_browser(
    pw: Optional[Playwright],
    browser: Optional[Browser],
    context: Optional[BrowserContext],
) -> None:
    """Close context, browser and Playwright; already-closed targets are fine."""
    if context is not None:
        try:
            await context.close()
        except Exception as e:
            logger.debug(f"Context close: {e}")
    if browser is not None:
        try:
            await browser.close()
        except Exception as e:
            logger.debug(f"Browser close: {e}")
    if pw is not None:
        try:
            await pw.stop()
        except Exception as e:
            logger.debug(f"Playwright stop: {e}")


# ---------------------------------------------------------------------------
# Page helpers
# ---------------------------------------------------------------------------

async def first_visible(scope, selectors: Iterable[str], timeout_ms: int = 1_000):
    """First locator among ``selectors`` that is currently visible, else None."""
    for selector in selectors:
        locator = scope.locator(selector).first
        try:
            if await locator.is_visible(timeout=timeout_ms):
                return locator
        except Exception as e:
            logger.debug(f"Visibility probe failed for {selector}: {e}")
            continue
    return None


async def wait_for_network_idle(scope, timeout_ms: int) -> None:
    """Best-effort wait for network settle; never raises."""
    try:
        await scope.wait_for_load_state("networkidle", timeout=timeout_ms)
    except Exception as e:
        logger.debug(f"Network idle wait ended: {e}")


async def accept_cookies_if_present(page, timeout_ms: int = 1_000, idle_timeout_ms: int = 10_000) -> bool:
    """Dismiss the consent banner if one is showing."""
    button = await first_visible(page, CONSENT_SELECTORS, timeout_ms)
    if button is None:
        return False
    try:
        await button.click()
    except Exception as e:
        logger.debug(f"Consent click failed: {e}")
        return False
    await wait_for_network_idle(page, idle_timeout_ms)
    logger.info("Cookie consent dismissed")
    return True
