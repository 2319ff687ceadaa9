"""
Extraction Scheduler
====================
Runs the field extractor over every discovered reference with a fixed
pool of cooperative workers.

Architecture:
- Single shared BrowserContext (one logical session), one page per item
- ``min(concurrency, len(references))`` worker coroutines
- Shared index cursor: each reference is claimed exactly once
- Randomized politeness delay before every navigation
- Per-item failures are logged to the error log and dropped; they never
  stop a worker.  Only ``PauseAborted`` escapes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from .errors import PauseAborted
from .extractor import DETAIL_READY_SELECTOR, FieldExtractor
from .models import ItemReference, ListingRecord
from .run_config import DelayRange, HarvestRunConfig

logger = logging.getLogger(__name__)


class ExtractionScheduler:
    """
    Bounded-concurrency extraction over a flat reference list.

    Usage::

        scheduler = ExtractionScheduler(context, cfg, error_log=log, pause=pause)
        records = await scheduler.extract_all(refs)
    """

    def __init__(
        self,
        context,
        cfg: HarvestRunConfig,
        *,
        extractor: Optional[FieldExtractor] = None,
        error_log=None,
        pause=None,
        sleep=asyncio.sleep,
    ):
        self._context = context
        self.cfg = cfg
        self._extractor = extractor or FieldExtractor()
        self._error_log = error_log
        self._pause = pause
        self._sleep = sleep

        # State (reset per batch)
        self._references: List[ItemReference] = []
        self._cursor = 0
        self._records: List[ListingRecord] = []
        self._failures = 0

    @property
    def completed_records(self) -> List[ListingRecord]:
        """Records finished so far (partial after an abort)."""
        return list(self._records)

    @property
    def failure_count(self) -> int:
        return self._failures

    async def extract_all(
        self,
        references: Sequence[ItemReference],
        concurrency_limit: Optional[int] = None,
        delay: Optional[DelayRange] = None,
    ) -> List[ListingRecord]:
        """Extract every reference; failed ones are simply absent."""
        self._references = list(references)
        self._cursor = 0
        self._records = []
        self._failures = 0

        if not self._references:
            return []

        limit = concurrency_limit or self.cfg.concurrency
        delay = delay or self.cfg.delay_range
        worker_count = min(limit, len(self._references))

        logger.info(
            f"[EXTRACT] {len(self._references)} listing(s) with {worker_count} worker(s)"
        )

        workers = [
            asyncio.create_task(self._worker(i, delay))
            for i in range(worker_count)
        ]
        outcomes = await asyncio.gather(*workers, return_exceptions=True)

        for outcome in outcomes:
            if isinstance(outcome, PauseAborted):
                raise outcome
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        logger.info(
            f"[EXTRACT] Done: {len(self._records)} record(s), {self._failures} failure(s)"
        )
        return list(self._records)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _claim(self) -> Optional[int]:
        # No await between read and increment: atomic on the event loop
        index = self._cursor
        if index >= len(self._references):
            return None
        self._cursor += 1
        return index

    async def _worker(self, worker_id: int, delay: DelayRange) -> None:
        while True:
            index = self._claim()
            if index is None:
                break
            url = self._references[index]

            await self._sleep(delay.draw_seconds())
            page = None
            try:
                page = await self._context.new_page()
                record = await self._process(page, url)
                self._records.append(record)
                logger.info(f"[WORKER-{worker_id}] Extracted {url[:80]}")
            except PauseAborted:
                raise
            except Exception as e:
                self._failures += 1
                logger.warning(f"[WORKER-{worker_id}] Failed to scrape {url[:80]}: {e}")
                if self._error_log is not None:
                    self._error_log.record_failure(url, e)
            finally:
                if page is not None:
                    try:
                        await page.close()
                    except Exception as e:
                        logger.debug(f"[WORKER-{worker_id}] Page close: {e}")

    async def _process(self, page, url: str) -> ListingRecord:
        async def _load():
            await page.goto(url, wait_until="networkidle")
            await page.wait_for_selector(
                DETAIL_READY_SELECTOR, timeout=self.cfg.selector_timeout_ms
            )

        if self._pause is not None:
            await self._pause.guarded(_load, label=url)
        else:
            await _load()
        return await self._extractor.extract(page, url)
