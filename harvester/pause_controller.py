"""
Pause Controller
================
Detects anti-automation blocking signals and suspends the harvest until a
human clears the challenge in the browser.

State machine::

    RUNNING ──(403 on monitored API | challenge-domain response)──▶ BLOCKED
    BLOCKED ──("continue")──▶ RUNNING      (PauseEvent RESUMED, step re-attempted)
    BLOCKED ──("abort")────▶ ABORTED       (PauseEvent ABORTED, PauseAborted raised)

The controller subscribes to the ``response`` event of every browser
context it is attached to, so no call site has to forward responses.
Call sites only consult it at page-load boundaries via ``checkpoint()``
or ``guarded()``.

Usage::

    pause = PauseController.from_config(cfg, error_log=log)
    pause.attach(context)
    await pause.guarded(lambda: page.goto(url), label=url)
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from .errors import PauseAborted
from .models import PauseEvent, PauseOutcome

logger = logging.getLogger(__name__)

Acknowledge = Callable[[PauseEvent], Awaitable[str]]
ResumeHook = Callable[[], Awaitable[None]]

_CONTINUE_WORDS = {"", "c", "continue", "y", "yes", "r", "resume"}
_ABORT_WORDS = {"a", "abort", "q", "quit", "n", "no"}


class PauseState(str, Enum):
    RUNNING = "RUNNING"
    BLOCKED = "BLOCKED"
    ABORTED = "ABORTED"


# ---------------------------------------------------------------------------
# Console acknowledgment (default)
# ---------------------------------------------------------------------------

def _read_decision() -> str:
    """Block until the user answers (runs in executor)."""
    try:
        return input("  Press ENTER (or 'c') to continue, 'a' to abort → ")
    except (EOFError, KeyboardInterrupt):
        return "abort"


async def console_acknowledge(event: PauseEvent) -> str:
    """Ask on the terminal without blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _read_decision)


def parse_decision(answer: Optional[str]) -> Optional[PauseOutcome]:
    """Map a free-text answer to an outcome; None if unrecognised."""
    word = (answer or "").strip().lower()
    if word in _CONTINUE_WORDS:
        return PauseOutcome.RESUMED
    if word in _ABORT_WORDS:
        return PauseOutcome.ABORTED
    return None


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class PauseController:
    """Cross-cutting blocked/paused/resumed state machine."""

    def __init__(
        self,
        *,
        blocked_endpoint_pattern: str = r"consumer-portal/v1/favorites",
        blocked_status: int = 403,
        challenge_url_pattern: str = r"captcha-delivery\.com|datadome",
        acknowledge: Optional[Acknowledge] = None,
        error_log=None,
        on_resume: Optional[ResumeHook] = None,
    ):
        self._endpoint_re = re.compile(blocked_endpoint_pattern)
        self._challenge_re = re.compile(challenge_url_pattern, re.IGNORECASE)
        self._blocked_status = blocked_status
        self._acknowledge = acknowledge or console_acknowledge
        self._error_log = error_log
        self._on_resume = on_resume

        self._state = PauseState.RUNNING
        self._current: Optional[PauseEvent] = None
        self._episode_count = 0
        self._events: List[PauseEvent] = []
        self._attached: Set[int] = set()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, cfg, **kwargs) -> "PauseController":
        return cls(
            blocked_endpoint_pattern=cfg.blocked_endpoint_pattern,
            blocked_status=cfg.blocked_status,
            challenge_url_pattern=cfg.challenge_url_pattern,
            **kwargs,
        )

    # ── Introspection ─────────────────────────────────────────────

    @property
    def state(self) -> PauseState:
        return self._state

    @property
    def events(self) -> List[PauseEvent]:
        return list(self._events)

    def summary(self) -> Tuple[int, float]:
        """(pause count, cumulative paused seconds)."""
        return len(self._events), sum(e.duration_s for e in self._events)

    def set_resume_hook(self, hook: Optional[ResumeHook]) -> None:
        self._on_resume = hook

    # ── Signal observation ────────────────────────────────────────

    def attach(self, context) -> None:
        """Subscribe to every response of ``context`` (once per context)."""
        key = id(context)
        if key in self._attached:
            return
        context.on("response", self._on_response)
        self._attached.add(key)
        logger.debug("[PAUSE] Response observer attached")

    def match_blocking(self, url: str, status: int) -> Optional[str]:
        """Reason string if the response is a blocking signal."""
        if self._endpoint_re.search(url) and status == self._blocked_status:
            return f"Monitored API returned {status}"
        if self._challenge_re.search(url):
            return "Challenge delivery response observed"
        return None

    def _on_response(self, response) -> None:
        try:
            url = response.url
            status = response.status
        except Exception as e:
            logger.debug(f"[PAUSE] Unreadable response: {e}")
            return
        reason = self.match_blocking(url, status)
        if reason:
            self.trigger(reason, url)

    def trigger(self, reason: str, url: str = "") -> bool:
        """Open a blocking episode; returns False when debounced."""
        if self._state is PauseState.ABORTED:
            return False
        if self._state is PauseState.BLOCKED:
            if url and url not in self._current.urls:
                self._current.urls.append(url)
            logger.debug(f"[PAUSE] Debounced signal during active episode: {url[:80]}")
            return False

        self._state = PauseState.BLOCKED
        self._episode_count += 1
        self._current = PauseEvent(reason=reason, urls=[url] if url else [])
        logger.warning(f"[PAUSE] BLOCKED: {reason}: {url[:100]}")
        return True

    # ── Suspension points ─────────────────────────────────────────

    async def checkpoint(self) -> None:
        """Wait out an active episode; raise ``PauseAborted`` once aborted."""
        if self._state is PauseState.BLOCKED:
            async with self._lock:
                # First waiter talks to the human, the rest queue behind it
                if self._state is PauseState.BLOCKED:
                    await self._resolve_episode()
        if self._state is PauseState.ABORTED:
            raise PauseAborted(self._events[-1] if self._events else None)

    async def guarded(self, operation: Callable[[], Awaitable], label: str = ""):
        """Run a page-load step, re-running it after a resumed episode."""
        while True:
            await self.checkpoint()
            episodes_before = self._episode_count
            try:
                result = await operation()
            except PauseAborted:
                raise
            except Exception:
                if self._episode_count == episodes_before:
                    raise
                logger.info(f"[PAUSE] Step failed while blocked, re-attempting: {label[:80]}")
                continue
            if self._episode_count != episodes_before:
                logger.info(f"[PAUSE] Re-attempting step after challenge: {label[:80]}")
                continue
            return result

    async def _resolve_episode(self) -> None:
        event = self._current
        self._print_instructions(event)

        outcome = None
        while outcome is None:
            answer = await self._acknowledge(event)
            outcome = parse_decision(answer)
            if outcome is None:
                logger.warning(f"[PAUSE] Unrecognised answer {answer!r}, expected continue or abort")

        event.ended_at = datetime.now(timezone.utc)
        event.outcome = outcome
        self._events.append(event)
        self._current = None
        if self._error_log is not None:
            self._error_log.record_pause(event)

        if outcome is PauseOutcome.ABORTED:
            self._state = PauseState.ABORTED
            logger.error(f"[PAUSE] ABORTED after {event.duration_s:.1f}s")
            return

        self._state = PauseState.RUNNING
        logger.info(f"[PAUSE] RESUMED after {event.duration_s:.1f}s")
        if self._on_resume is not None:
            try:
                await self._on_resume()
            except Exception as e:
                logger.error(f"[PAUSE] Resume hook failed: {e}")

    @staticmethod
    def _print_instructions(event: PauseEvent) -> None:
        print("\n" + "=" * 60)
        print("  ANTI-AUTOMATION CHALLENGE DETECTED")
        print("=" * 60)
        print(f"  Reason:  {event.reason}")
        for url in event.urls[:5]:
            print(f"  URL:     {url[:100]}")
        print()
        print("  ➡  Solve the challenge in the browser window (or refresh")
        print("     the session from another browser).")
        print("  ➡  Then come back here to continue or abort the run.")
        print("=" * 60)
