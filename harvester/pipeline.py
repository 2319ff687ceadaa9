"""
Harvest Pipeline
================
Orchestrates one run end to end.

    session check → browser + context → pause observer attached
    → link discovery (each collection URL, sequential) → union
    → extraction scheduler → output writer → summary

Failure policy:
- Missing session / bad parameters: raised before the browser starts
- One collection failing to load: logged, other collections still run,
  exit status 1 at the end
- Per-item extraction failures: error log only
- Aborted pause: partial records are flushed, exit status 2
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .audit import ErrorLog
from .auth.session_store import SessionStore
from .browser import close_browser, open_browser
from .discovery import LinkDiscoveryEngine
from .errors import EXIT_FAILURE, EXIT_OK, CollectionLoadError, PauseAborted
from .exporter import write_outputs
from .models import ItemReference, ListingRecord, PauseEvent
from .monitor import HarvestMetrics, format_summary
from .pause_controller import Acknowledge, PauseController
from .run_config import HarvestRunConfig
from .scheduler import ExtractionScheduler

logger = logging.getLogger(__name__)

Writer = Callable[[List[ListingRecord]], Optional[Dict[str, str]]]


@dataclass
class HarvestResult:
    """Outcome of a harvest run."""
    records: List[ListingRecord] = field(default_factory=list)
    references: List[ItemReference] = field(default_factory=list)
    pause_events: List[PauseEvent] = field(default_factory=list)
    failed_collections: List[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    metrics: HarvestMetrics = field(default_factory=HarvestMetrics)
    exit_code: int = EXIT_OK
    aborted: bool = False


class HarvestPipeline:
    """
    Runs discovery + extraction for a set of collection URLs.

    Usage::

        cfg = HarvestRunConfig(urls=["https://www.seloger.com/mes-recherches/favoris"])
        result = HarvestPipeline(cfg).run()
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        cfg: HarvestRunConfig,
        *,
        session_store: Optional[SessionStore] = None,
        writer: Optional[Writer] = None,
        acknowledge: Optional[Acknowledge] = None,
        sleep=asyncio.sleep,
    ):
        self.cfg = cfg
        self._store = session_store or SessionStore(cfg.state_path)
        self._writer = writer or self._default_writer
        self._acknowledge = acknowledge
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self) -> HarvestResult:
        """Sync wrapper: run the async pipeline from synchronous code."""
        return asyncio.run(self.run_async())

    async def run_async(self) -> HarvestResult:
        self.cfg.validate()
        self._store.require()
        self.cfg.log_summary()

        pw = browser = context = None
        try:
            pw, browser, context = await open_browser(self.cfg, self._store)
            return await self.harvest(context)
        finally:
            await close_browser(pw, browser, context)

    async def harvest(self, context) -> HarvestResult:
        """Run every stage against an already-authenticated context."""
        cfg = self.cfg
        metrics = HarvestMetrics()
        error_log = ErrorLog(cfg.error_log)
        error_log.reset()

        pause = PauseController.from_config(
            cfg, acknowledge=self._acknowledge, error_log=error_log
        )
        if cfg.save_session_on_resume:
            pause.set_resume_hook(lambda: self._store.save(context))
        pause.attach(context)

        discovery = LinkDiscoveryEngine(context, cfg, pause=pause, sleep=self._sleep)
        scheduler = ExtractionScheduler(
            context, cfg, error_log=error_log, pause=pause, sleep=self._sleep
        )

        result = HarvestResult(metrics=metrics)
        stop_reason = "completed"
        try:
            result.references, result.failed_collections = await self.collect_references(
                discovery, cfg.urls, metrics
            )
            if not result.references:
                logger.warning("No listings found in the provided favorites URLs.")

            result.records = await scheduler.extract_all(
                result.references, cfg.concurrency, cfg.delay_range
            )
            if result.failed_collections:
                result.exit_code = EXIT_FAILURE
                stop_reason = f"{len(result.failed_collections)} collection(s) failed to load"
        except PauseAborted as e:
            logger.error("[PAUSE] Run aborted, flushing partial results")
            result.records = scheduler.completed_records
            result.aborted = True
            result.exit_code = e.exit_code
            stop_reason = "aborted during challenge pause"

        result.pause_events = pause.events
        metrics.records_extracted = len(result.records)
        metrics.extraction_failures = scheduler.failure_count
        metrics.pause_count, metrics.paused_seconds = pause.summary()
        metrics.finish(stop_reason)

        result.outputs = self._writer(result.records) or {}
        logger.info("\n" + format_summary(metrics))
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def collect_references(
        self,
        discovery: LinkDiscoveryEngine,
        urls: Iterable[str],
        metrics: Optional[HarvestMetrics] = None,
    ) -> Tuple[List[ItemReference], List[str]]:
        """Union of every collection's references, plus the URLs that failed."""
        urls = list(urls)
        union: Dict[ItemReference, None] = {}
        failed: List[str] = []
        for url in urls:
            try:
                refs = await discovery.discover_references(url, self.cfg.delay_range)
            except CollectionLoadError as e:
                logger.error(f"[DISCOVERY] {e}")
                failed.append(url)
                if metrics is not None:
                    metrics.collections_failed += 1
                continue
            if metrics is not None:
                metrics.collections_visited += 1
            for ref in sorted(refs):
                union.setdefault(ref, None)

        if metrics is not None:
            metrics.references_discovered = len(union)
        logger.info(f"[DISCOVERY] {len(union)} unique reference(s) across {len(urls)} collection(s)")
        return list(union), failed

    def _default_writer(self, records: List[ListingRecord]) -> Dict[str, str]:
        return write_outputs(records, self.cfg.output_dir, self.cfg.out_path)
