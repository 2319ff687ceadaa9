"""
End-to-end tests for harvester.pipeline against the in-memory fake site:
multi-collection union, collection failures, pause abort/resume and
run-level preconditions.
"""

import asyncio
import json

import pytest

from harvester.errors import ConfigError, SessionMissingError
from harvester.models import PauseOutcome
from harvester.pipeline import HarvestPipeline
from harvester.run_config import HarvestRunConfig

from fakes import FakeContext, PageSpec, no_sleep

FAV_A = "https://www.seloger.com/mes-favoris/liste-a"
FAV_B = "https://www.seloger.com/mes-favoris/liste-b"
API_URL = "https://www.seloger.com/consumer-portal/v1/favorites?limit=50"
BASE = "https://www.seloger.com/annonces/achat/appartement/nantes/"


def listing(n: int) -> str:
    return f"{BASE}{700 + n}.htm"


def make_cfg(tmp_path, **overrides) -> HarvestRunConfig:
    values = dict(
        urls=[FAV_A, FAV_B],
        delay_min_ms=0,
        delay_max_ms=0,
        output_dir=str(tmp_path),
        error_log=str(tmp_path / "errors.log"),
        save_session_on_resume=False,
        scope_detect_timeout_s=0.0,
    )
    values.update(overrides)
    return HarvestRunConfig(**values)


class CapturingWriter:
    def __init__(self):
        self.records = None

    def __call__(self, records):
        self.records = list(records)
        return {"json": "memory"}


class FakeStore:
    def __init__(self):
        self.saved = 0

    def require(self):
        return None

    async def save(self, context):
        self.saved += 1


def answers(*values):
    queue = list(values)

    async def acknowledge(event):
        return queue.pop(0)
    return acknowledge


# ====================================================================
# 1. Normal runs
# ====================================================================

class TestHarvest:

    def test_union_across_collections(self, tmp_path):
        # 5 + 7 references, 3 of them shared
        a = [listing(i) for i in range(0, 5)]
        b = [listing(i) for i in range(2, 9)]
        ctx = FakeContext({FAV_A: PageSpec(batches=[a[:3], a[3:]]), FAV_B: PageSpec(batches=[b])})
        writer = CapturingWriter()
        pipeline = HarvestPipeline(make_cfg(tmp_path), writer=writer, sleep=no_sleep)

        result = asyncio.run(pipeline.harvest(ctx))

        assert len(result.references) == 9
        assert sorted(r.url for r in result.records) == sorted(set(a) | set(b))
        assert writer.records == result.records
        assert result.exit_code == 0
        assert result.metrics.references_discovered == 9
        assert result.metrics.collections_visited == 2
        detail_visits = [u for u in ctx.visits if u.startswith(BASE)]
        assert sorted(detail_visits) == sorted(set(a) | set(b))

    def test_empty_run_warns_and_succeeds(self, tmp_path, caplog):
        ctx = FakeContext({FAV_A: PageSpec(), FAV_B: PageSpec()})
        writer = CapturingWriter()
        pipeline = HarvestPipeline(make_cfg(tmp_path), writer=writer, sleep=no_sleep)

        with caplog.at_level("WARNING"):
            result = asyncio.run(pipeline.harvest(ctx))

        assert result.records == []
        assert writer.records == []
        assert result.exit_code == 0
        assert "No listings found in the provided favorites URLs." in caplog.text

    def test_failed_collection_does_not_stop_others(self, tmp_path):
        ctx = FakeContext({
            FAV_A: PageSpec(fail=True),
            FAV_B: PageSpec(batches=[[listing(1), listing(2)]]),
        })
        pipeline = HarvestPipeline(make_cfg(tmp_path), writer=CapturingWriter(), sleep=no_sleep)

        result = asyncio.run(pipeline.harvest(ctx))

        assert result.failed_collections == [FAV_A]
        assert len(result.records) == 2
        assert result.exit_code == 1

    def test_item_failure_goes_to_error_log(self, tmp_path):
        ctx = FakeContext({
            FAV_A: PageSpec(batches=[[listing(1), listing(2), listing(3)]]),
            listing(2): PageSpec(fail=True),
        })
        cfg = make_cfg(tmp_path, urls=[FAV_A])
        pipeline = HarvestPipeline(cfg, writer=CapturingWriter(), sleep=no_sleep)

        result = asyncio.run(pipeline.harvest(ctx))

        assert len(result.records) == 2
        assert result.exit_code == 0
        lines = (tmp_path / "errors.log").read_text(encoding="utf-8").splitlines()
        assert len(lines) == 1 and listing(2) in lines[0]

    def test_default_writer_creates_json_and_csv(self, tmp_path):
        ctx = FakeContext({FAV_A: PageSpec(batches=[[listing(1)]])})
        cfg = make_cfg(tmp_path, urls=[FAV_A], out_path=str(tmp_path / "extra" / "fav.json"))
        result = asyncio.run(HarvestPipeline(cfg, sleep=no_sleep).harvest(ctx))

        data = json.loads((tmp_path / "output.json").read_text(encoding="utf-8"))
        assert [d["url"] for d in data] == [listing(1)]
        assert (tmp_path / "output.csv").exists()
        assert (tmp_path / "extra" / "fav.json").exists()
        assert set(result.outputs) == {"json", "csv", "out"}


# ====================================================================
# 2. Pauses
# ====================================================================

class TestPauses:

    def test_abort_flushes_and_exits_2(self, tmp_path):
        ctx = FakeContext({
            FAV_A: PageSpec(batches=[[listing(1)]]),
            FAV_B: PageSpec(batches=[[listing(2)]], responses=[(API_URL, 403)]),
        })
        writer = CapturingWriter()
        pipeline = HarvestPipeline(
            make_cfg(tmp_path), writer=writer, acknowledge=answers("abort"), sleep=no_sleep
        )

        result = asyncio.run(pipeline.harvest(ctx))

        assert result.exit_code == 2
        assert result.aborted
        assert len(result.pause_events) == 1
        assert result.pause_events[0].outcome is PauseOutcome.ABORTED
        assert writer.records == []
        log = (tmp_path / "errors.log").read_text(encoding="utf-8")
        assert "PAUSE" in log

    def test_resume_reloads_and_saves_session(self, tmp_path):
        ctx = FakeContext({
            FAV_A: PageSpec(batches=[[listing(1), listing(2)]], responses=[(API_URL, 403)]),
        })
        store = FakeStore()
        cfg = make_cfg(tmp_path, urls=[FAV_A], save_session_on_resume=True)
        pipeline = HarvestPipeline(
            cfg, session_store=store, writer=CapturingWriter(),
            acknowledge=answers("continue"), sleep=no_sleep,
        )

        result = asyncio.run(pipeline.harvest(ctx))

        assert result.exit_code == 0
        assert len(result.records) == 2
        assert ctx.visits.count(FAV_A) == 2
        assert store.saved == 1
        assert result.pause_events[0].outcome is PauseOutcome.RESUMED
        assert result.metrics.pause_count == 1

    def test_abort_during_extraction_flushes_finished_records(self, tmp_path):
        refs = [listing(i) for i in range(6)]
        ctx = FakeContext({
            FAV_A: PageSpec(batches=[refs]),
            listing(4): PageSpec(responses=[(API_URL, 403)]),
        })
        writer = CapturingWriter()
        cfg = make_cfg(tmp_path, urls=[FAV_A], concurrency=1)
        pipeline = HarvestPipeline(
            cfg, writer=writer, acknowledge=answers("abort"), sleep=no_sleep
        )

        result = asyncio.run(pipeline.harvest(ctx))

        assert result.exit_code == 2
        assert result.aborted
        assert [r.url for r in writer.records] == refs[:4]
        assert len(result.pause_events) == 1
        assert result.pause_events[0].outcome is PauseOutcome.ABORTED
        assert listing(5) not in ctx.visits

    def test_resume_during_extraction_reloads_listing(self, tmp_path):
        refs = [listing(i) for i in range(6)]
        ctx = FakeContext({
            FAV_A: PageSpec(batches=[refs]),
            listing(2): PageSpec(responses=[(API_URL, 403)]),
        })
        writer = CapturingWriter()
        cfg = make_cfg(tmp_path, urls=[FAV_A], concurrency=1)
        pipeline = HarvestPipeline(
            cfg, writer=writer, acknowledge=answers("continue"), sleep=no_sleep
        )

        result = asyncio.run(pipeline.harvest(ctx))

        assert result.exit_code == 0
        assert ctx.visits.count(listing(2)) == 2
        assert sorted(r.url for r in writer.records) == refs
        assert result.pause_events[0].outcome is PauseOutcome.RESUMED


# ====================================================================
# 3. Preconditions
# ====================================================================

class TestPreconditions:

    def test_missing_session_fails_before_browser(self, tmp_path):
        cfg = make_cfg(tmp_path, state_path=str(tmp_path / "missing.json"))
        with pytest.raises(SessionMissingError) as excinfo:
            HarvestPipeline(cfg).run()
        assert "Storage state not found" in str(excinfo.value)

    def test_no_urls(self, tmp_path):
        with pytest.raises(ConfigError):
            HarvestPipeline(make_cfg(tmp_path, urls=[])).run()

    def test_inverted_delays(self, tmp_path):
        with pytest.raises(ConfigError):
            HarvestPipeline(make_cfg(tmp_path, delay_min_ms=2000, delay_max_ms=10)).run()
