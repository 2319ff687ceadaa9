"""
Unified Run Configuration
=========================
Single source of truth for ALL harvester defaults and runtime limits.

Every module (CLI, link discovery, extraction scheduler, pause controller)
reads from this object.  CLI flags populate it; nothing else hard-codes
timeouts, delays or paths.
"""

from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Canonical defaults: the ONLY place these numbers live
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "concurrency": 3,
    "delay_min_ms": 1_000,
    "delay_max_ms": 2_000,
    "idle_ceiling": 6,                  # reveal iterations without growth before stopping
    "scope_detect_timeout_s": 30.0,
    "scope_detect_interval_s": 0.5,
    "network_idle_timeout_ms": 10_000,
    "selector_timeout_ms": 30_000,
    "navigation_timeout_ms": 60_000,
    "visible_probe_timeout_ms": 1_000,
    "headless": True,
    "viewport": {"width": 1365, "height": 768},
    "locale": "fr-FR",
    "timezone_id": "Europe/Paris",
    "user_agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36"
    ),
    "state_path": os.path.join("local", "state-seloger.json"),
    "output_dir": "local",
    "error_log": os.path.join("local", "errors.log"),
    "blocked_endpoint_pattern": r"consumer-portal/v1/favorites",
    "blocked_status": 403,
    "challenge_url_pattern": r"captcha-delivery\.com|datadome",
}


@dataclass(frozen=True)
class DelayRange:
    """Politeness delay bounds in milliseconds (inclusive)."""

    min_ms: int = _DEFAULTS["delay_min_ms"]
    max_ms: int = _DEFAULTS["delay_max_ms"]

    def __post_init__(self):
        if self.min_ms < 0 or self.max_ms < 0:
            raise ConfigError("Delay bounds must be non-negative integers")
        if self.max_ms < self.min_ms:
            raise ConfigError("--delay-max must be greater than or equal to --delay-min")

    def draw(self) -> int:
        """Uniformly drawn delay in ms."""
        if self.max_ms <= self.min_ms:
            return self.min_ms
        return random.randint(self.min_ms, self.max_ms)

    def draw_seconds(self) -> float:
        return self.draw() / 1000


@dataclass
class HarvestRunConfig:
    """
    Unified configuration consumed by every harvester subsystem.

    Populate via:
      - ``HarvestRunConfig(urls=[...])``          → all defaults
      - ``HarvestRunConfig.from_cli_args(ns)``    → from argparse Namespace
    """

    # ---- Inputs ----
    urls: List[str] = field(default_factory=list)
    out_path: Optional[str] = None

    # ---- Scheduling ----
    concurrency: int = _DEFAULTS["concurrency"]
    delay_min_ms: int = _DEFAULTS["delay_min_ms"]
    delay_max_ms: int = _DEFAULTS["delay_max_ms"]

    # ---- Discovery ----
    idle_ceiling: int = _DEFAULTS["idle_ceiling"]
    scope_detect_timeout_s: float = _DEFAULTS["scope_detect_timeout_s"]
    scope_detect_interval_s: float = _DEFAULTS["scope_detect_interval_s"]

    # ---- Timeouts (ms) ----
    network_idle_timeout_ms: int = _DEFAULTS["network_idle_timeout_ms"]
    selector_timeout_ms: int = _DEFAULTS["selector_timeout_ms"]
    navigation_timeout_ms: int = _DEFAULTS["navigation_timeout_ms"]
    visible_probe_timeout_ms: int = _DEFAULTS["visible_probe_timeout_ms"]

    # ---- Browser ----
    headless: bool = _DEFAULTS["headless"]
    viewport: dict = field(default_factory=lambda: dict(_DEFAULTS["viewport"]))
    locale: str = _DEFAULTS["locale"]
    timezone_id: str = _DEFAULTS["timezone_id"]
    user_agent: str = field(
        default_factory=lambda: os.environ.get("USER_AGENT") or _DEFAULTS["user_agent"]
    )

    # ---- Paths ----
    state_path: str = _DEFAULTS["state_path"]
    output_dir: str = _DEFAULTS["output_dir"]
    error_log: str = _DEFAULTS["error_log"]

    # ---- Blocking signals ----
    blocked_endpoint_pattern: str = _DEFAULTS["blocked_endpoint_pattern"]
    blocked_status: int = _DEFAULTS["blocked_status"]
    challenge_url_pattern: str = _DEFAULTS["challenge_url_pattern"]
    save_session_on_resume: bool = True

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------
    @property
    def delay_range(self) -> DelayRange:
        return DelayRange(self.delay_min_ms, self.delay_max_ms)

    def validate(self) -> "HarvestRunConfig":
        """Raise ``ConfigError`` on malformed parameters; return self."""
        if not self.urls:
            raise ConfigError("Please provide at least one favorites URL.")
        if self.concurrency < 1:
            raise ConfigError("--concurrency must be a positive integer")
        if self.idle_ceiling < 1:
            raise ConfigError("idle_ceiling must be a positive integer")
        # DelayRange validates on construction
        self.delay_range
        return self

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "HarvestRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        cfg = cls(
            urls=list(getattr(args, "urls", None) or []),
            out_path=getattr(args, "out", None),
            concurrency=getattr(args, "concurrency", _DEFAULTS["concurrency"]),
            delay_min_ms=getattr(args, "delay_min", _DEFAULTS["delay_min_ms"]),
            delay_max_ms=getattr(args, "delay_max", _DEFAULTS["delay_max_ms"]),
            headless=not getattr(args, "headful", False),
            state_path=getattr(args, "state_file", None) or _DEFAULTS["state_path"],
            output_dir=getattr(args, "output_dir", None) or _DEFAULTS["output_dir"],
        )
        cfg.error_log = os.path.join(cfg.output_dir, "errors.log")
        return cfg

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger."""
        logger.info("=" * 60)
        logger.info("HARVEST RUN CONFIG")
        logger.info("=" * 60)
        for url in self.urls:
            logger.info(f"  Collection:       {url}")
        logger.info(f"  Concurrency:      {self.concurrency}")
        logger.info(f"  Delay:            {self.delay_min_ms}-{self.delay_max_ms} ms")
        logger.info(f"  Idle Ceiling:     {self.idle_ceiling} iterations")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Session State:    {self.state_path}")
        logger.info(f"  Output Dir:       {self.output_dir}")
        if self.out_path:
            logger.info(f"  Extra JSON:       {self.out_path}")
        logger.info("=" * 60)
