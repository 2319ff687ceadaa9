"""
Tests for harvester.discovery: reveal-loop convergence, deduplication,
collection scope selection and load failures.
"""

import asyncio

import pytest

from harvester.discovery import DiscoveryState, LinkDiscoveryEngine
from harvester.errors import CollectionLoadError
from harvester.run_config import DelayRange, HarvestRunConfig

from fakes import FakeContext, FakeFrame, PageSpec, no_sleep

FAVORITES = "https://www.seloger.com/mes-favoris"
BASE = "https://www.seloger.com/annonces/achat/appartement/paris/"


def listing(n: int) -> str:
    return f"{BASE}{1000 + n}.htm"


def batch(start: int, count: int):
    return [listing(i) for i in range(start, start + count)]


def make_cfg(**overrides) -> HarvestRunConfig:
    values = dict(
        urls=[FAVORITES],
        delay_min_ms=0,
        delay_max_ms=0,
        scope_detect_timeout_s=0.0,
        scope_detect_interval_s=0.0,
    )
    values.update(overrides)
    return HarvestRunConfig(**values)


def run(coro):
    return asyncio.run(coro)


# ====================================================================
# 1. Running reference set
# ====================================================================

class TestDiscoveryState:

    def test_growth_resets_idle_counter(self):
        state = DiscoveryState()
        assert state.absorb([listing(1)]) is True
        assert state.absorb([listing(1)]) is False
        assert state.idle_iterations == 1
        assert state.absorb([listing(1), listing(2)]) is True
        assert state.idle_iterations == 0

    def test_variants_collapse(self):
        state = DiscoveryState()
        state.absorb([
            listing(1),
            listing(1) + "#photos",
            listing(1) + "?utm_source=newsletter",
            listing(1).replace("www.seloger.com", "WWW.SELOGER.COM"),
        ])
        assert list(state.references) == [listing(1)]

    def test_converged_at_ceiling(self):
        state = DiscoveryState()
        for _ in range(3):
            state.absorb([])
        assert state.converged(3)
        assert not state.converged(4)


# ====================================================================
# 2. Reveal loop
# ====================================================================

class TestRevealLoop:
    """The loop stops once the set has not grown for idle_ceiling iterations."""

    def test_converges_after_scroll_batches(self):
        frame = FakeFrame(FAVORITES, PageSpec(batches=[batch(0, 5), batch(5, 5), batch(10, 5)]))
        engine = LinkDiscoveryEngine(FakeContext(), make_cfg(), sleep=no_sleep)

        refs = run(engine.collect_in_scope(frame, DelayRange(0, 0)))

        assert refs == set(batch(0, 15))
        # three growing iterations, then idle_ceiling idle ones
        assert frame.scan_calls == 3 + 6

    def test_load_more_button_preferred_over_scroll(self):
        frame = FakeFrame(FAVORITES, PageSpec(
            batches=[batch(0, 4), batch(4, 4), batch(8, 4)], load_more=True,
        ))
        engine = LinkDiscoveryEngine(FakeContext(), make_cfg(), sleep=no_sleep)

        refs = run(engine.collect_in_scope(frame, DelayRange(0, 0)))

        assert len(refs) == 12
        assert frame.clicks == 2

    def test_duplicates_across_batches_counted_once(self):
        frame = FakeFrame(FAVORITES, PageSpec(batches=[
            [listing(1), listing(2), listing(2) + "#map"],
            [listing(1), listing(3)],
        ]))
        engine = LinkDiscoveryEngine(FakeContext(), make_cfg(), sleep=no_sleep)

        refs = run(engine.collect_in_scope(frame, DelayRange(0, 0)))

        assert refs == {listing(1), listing(2), listing(3)}

    def test_transient_scan_failures_count_as_no_progress(self):
        frame = FakeFrame(FAVORITES, PageSpec(
            batches=[batch(0, 5), batch(5, 5)], scan_failures=(2, 3),
        ))
        engine = LinkDiscoveryEngine(FakeContext(), make_cfg(), sleep=no_sleep)

        refs = run(engine.collect_in_scope(frame, DelayRange(0, 0)))

        assert refs == set(batch(0, 10))
        assert frame.scan_calls == 4 + 6

    def test_smaller_idle_ceiling_stops_sooner(self):
        frame = FakeFrame(FAVORITES, PageSpec(batches=[batch(0, 2)]))
        engine = LinkDiscoveryEngine(FakeContext(), make_cfg(idle_ceiling=2), sleep=no_sleep)

        run(engine.collect_in_scope(frame, DelayRange(0, 0)))

        assert frame.scan_calls == 1 + 2


# ====================================================================
# 3. Scope selection and full discovery
# ====================================================================

class TestDiscoverReferences:

    def test_top_level_collection_page(self):
        ctx = FakeContext({FAVORITES: PageSpec(batches=[batch(0, 3), batch(3, 2)])})
        engine = LinkDiscoveryEngine(ctx, make_cfg(), sleep=no_sleep)

        refs = run(engine.discover_references(FAVORITES))

        assert refs == set(batch(0, 5))
        assert ctx.pages[0].closed

    def test_embedded_collection_frame(self):
        account = "https://www.seloger.com/compte"
        ctx = FakeContext({account: PageSpec(frames=[
            ("https://www.seloger.com/widgets/header", PageSpec()),
            ("https://app.seloger.com/mes-favoris/embed", PageSpec(batches=[batch(0, 4)])),
        ])})
        engine = LinkDiscoveryEngine(ctx, make_cfg(), sleep=no_sleep)

        refs = run(engine.discover_references(account))

        assert refs == set(batch(0, 4))

    def test_embedded_frame_preferred_over_matching_top_level_url(self):
        favorites = "https://www.seloger.com/mes-recherches/favoris"
        ctx = FakeContext({favorites: PageSpec(
            batches=[[listing(99)]],
            frames=[("https://app.seloger.com/mes-favoris/embed", PageSpec(batches=[batch(0, 4)]))],
        )})
        engine = LinkDiscoveryEngine(ctx, make_cfg(scope_detect_timeout_s=30.0), sleep=no_sleep)

        refs = run(engine.discover_references(favorites))

        assert refs == set(batch(0, 4))
        assert ctx.pages[0].scan_calls == 0

    def test_matching_top_level_url_is_only_a_fallback(self):
        favorites = "https://www.seloger.com/mes-recherches/favoris"
        ctx = FakeContext({favorites: PageSpec(frames=[
            ("https://widgets.example.net/late", PageSpec(batches=[batch(0, 3)])),
        ])})
        engine = LinkDiscoveryEngine(ctx, make_cfg(), sleep=no_sleep)

        refs = run(engine.discover_references(favorites))

        # nothing matched and the top-level page is empty: every frame is rescanned
        assert refs == set(batch(0, 3))

    def test_frame_selected_by_item_markers(self):
        account = "https://www.seloger.com/compte"
        ctx = FakeContext({account: PageSpec(frames=[
            ("https://widgets.example.net/list", PageSpec(batches=[batch(0, 2)], has_items=True)),
        ])})
        engine = LinkDiscoveryEngine(ctx, make_cfg(), sleep=no_sleep)

        assert run(engine.discover_references(account)) == set(batch(0, 2))

    def test_falls_back_to_every_frame(self):
        account = "https://www.seloger.com/compte"
        ctx = FakeContext({account: PageSpec(frames=[
            ("https://widgets.example.net/late", PageSpec(batches=[batch(0, 3)])),
        ])})
        engine = LinkDiscoveryEngine(ctx, make_cfg(scope_detect_timeout_s=0), sleep=no_sleep)

        refs = run(engine.discover_references(account))

        assert refs == set(batch(0, 3))
        assert ctx.pages[0].child_frames[0].scan_calls > 0

    def test_empty_collection(self):
        ctx = FakeContext({FAVORITES: PageSpec()})
        engine = LinkDiscoveryEngine(ctx, make_cfg(), sleep=no_sleep)

        assert run(engine.discover_references(FAVORITES)) == set()

    def test_load_failure_raises_collection_error(self):
        ctx = FakeContext({FAVORITES: PageSpec(fail=True)})
        engine = LinkDiscoveryEngine(ctx, make_cfg(), sleep=no_sleep)

        with pytest.raises(CollectionLoadError) as excinfo:
            run(engine.discover_references(FAVORITES))

        assert excinfo.value.url == FAVORITES
        assert ctx.pages[0].closed
