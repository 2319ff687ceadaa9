"""
Session Bootstrap Utility
=========================
Launches a headed (visible) browser for manual sign-in and saves the
session snapshot the headless harvester runs on.

Workflow (plain):
    1. Launch headed Chromium, open the site home page
    2. User signs in manually within ``wait_seconds``
    3. ``storage_state`` (cookies + localStorage) saved to ``output_path``

Workflow (``validate_auth=True``):
    1. Launch headed Chromium, open the site home page
    2. User signs in, then presses Enter
    3. Favorites page opened while responses are watched (API 200 / 403,
       challenge traffic) so the user can clear any challenge
    4. User presses Enter again, state saved

Usage::

    python -m harvester --bootstrap
    python -m harvester --bootstrap --validate-auth --favorites URL
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import sys
from pathlib import Path

from playwright.async_api import async_playwright

from ..run_config import HarvestRunConfig

logger = logging.getLogger(__name__)

HOME_URL = "https://www.seloger.com/"
DEFAULT_FAVORITES_URL = "https://www.seloger.com/mes-recherches/favoris"

_FAVORITES_API_RE = re.compile(HarvestRunConfig.blocked_endpoint_pattern)
_CHALLENGE_RE = re.compile(HarvestRunConfig.challenge_url_pattern, re.IGNORECASE)


def has_display() -> bool:
    """Headed Chromium needs a display on Linux."""
    return not (sys.platform.startswith("linux") and not os.environ.get("DISPLAY"))


def _wait_for_enter(prompt: str) -> str:
    """Block until the user presses Enter (runs in executor)."""
    try:
        return input(prompt)
    except (EOFError, KeyboardInterrupt):
        return ""


async def _prompt(prompt: str) -> None:
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, _wait_for_enter, prompt)


def _log_auth_signal(response) -> None:
    try:
        url = response.url
        status = response.status
    except Exception:
        return
    if _FAVORITES_API_RE.search(url):
        if status == 200:
            print("  [OK] Favorites API returned 200.")
        elif status == HarvestRunConfig.blocked_status:
            print(f"  [WARN] Favorites API returned {status}. Solve the challenge in the browser.")
    if _CHALLENGE_RE.search(url):
        print("  [INFO] Challenge flow detected. Solve it in the browser, then continue.")


async def bootstrap_session(
    output_path: str,
    *,
    validate_auth: bool = False,
    favorites_url: str = DEFAULT_FAVORITES_URL,
    wait_seconds: int = 60,
) -> bool:
    """Launch a headed browser for manual sign-in and save the session.

    Returns:
        True if the state file was written.
    """
    if not has_display():
        print("GUI display not detected (missing DISPLAY). Please run on a GUI-capable host.")
        return False
    if wait_seconds <= 0:
        raise ValueError("--wait must be a positive integer")

    pw = await async_playwright().start()
    browser = None
    context = None
    try:
        browser = await pw.chromium.launch(headless=False)
        context = await browser.new_context()
        page = await context.new_page()
        await page.goto(HOME_URL, wait_until="networkidle")

        if not validate_auth:
            print(f"  Please sign in manually within {wait_seconds} seconds...")
            await page.wait_for_timeout(wait_seconds * 1000)
        else:
            print("  Manual authentication validation enabled.")
            print("  1) Sign in on the website in the opened window.")
            print("  2) When ready, press Enter here to open your favorites and validate.")
            await _prompt("  Press Enter to navigate to favorites... ")

            page.on("response", _log_auth_signal)
            await page.goto(favorites_url, wait_until="domcontentloaded")
            print("  Validate that your favorites load.")
            print("  If a challenge appears, complete it in the browser.")
            print("  When listings are visible, press Enter here to save the authenticated state.")
            await _prompt("  Press Enter to save state... ")

        state_path = Path(output_path)
        state_path.parent.mkdir(parents=True, exist_ok=True)
        await context.storage_state(path=str(state_path))
        print(f"  STATE_SAVED: {state_path}")
        return True

    except Exception as e:
        logger.error(f"[BOOTSTRAP] Session capture failed: {e}")
        return False
    finally:
        if context:
            try:
                await context.close()
            except Exception as e:
                logger.debug(f"[BOOTSTRAP] Context close: {e}")
        if browser:
            try:
                await browser.close()
            except Exception as e:
                logger.debug(f"[BOOTSTRAP] Browser close: {e}")
        await pw.stop()
