from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from app.domain import SyncMode, SyncOutcome
from app.errors import RateLimitedError, UpstreamUnavailableError
from app.models import CatalogDomain
from app.repositories import CatalogRepository, MetaRepository
from conftest import FakeClock, domain_rows, paged_transport
from ingestion.client import CatalogClient
from ingestion.service import CatalogSynchronizer

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _synchronizer(session_factory, transport, *, clock=None, sleep=None, on_mutated=None, **overrides):
    def client_factory() -> CatalogClient:
        return CatalogClient(
            api_url="https://catalog.test/api/domains",
            api_key="secret",
            max_retries=0,
            sleep=lambda seconds: None,
            transport=transport,
        )

    options = {
        "page_size": 100,
        "max_pages_per_run": 80,
        "page_delay_seconds": 0.25,
        "sync_interval_seconds": 2 * 60 * 60,
        "cooldown_seconds": 2 * 60 * 60,
    }
    options.update(overrides)
    return CatalogSynchronizer(
        session_factory=session_factory,
        client_factory=client_factory,
        on_store_mutated=on_mutated,
        clock=clock or FakeClock(START),
        sleep=sleep or (lambda seconds: None),
        **options,
    )


def _state(session_factory):
    with session_factory() as session:
        total = CatalogRepository(session).count_domains()
        return MetaRepository(session).load_sync_state(is_syncing=False, total_domains=total)


def test_full_sync_walks_pages_until_short_page(session_factory, recording_sleep):
    pages = {1: domain_rows(0, 100), 2: domain_rows(100, 100), 3: domain_rows(200, 40)}
    mutations: list[bool] = []
    synchronizer = _synchronizer(
        session_factory,
        paged_transport(pages),
        sleep=recording_sleep,
        on_mutated=lambda: mutations.append(True),
    )

    result = synchronizer.run(force=True)

    assert result.outcome is SyncOutcome.COMPLETED
    assert result.mode is SyncMode.FULL
    assert result.pages_processed == 3
    assert result.last_page == 3
    assert result.domains_upserted == 240
    assert recording_sleep.calls == [0.25, 0.25]
    assert mutations == [True]

    state = _state(session_factory)
    assert state.total_domains == 240
    assert state.cursor_page == 1
    assert state.total_pages is None
    assert state.last_page == 3
    assert state.last_source_count == 40
    assert state.last_normalized_count == 40
    assert state.sync_mode is SyncMode.INCREMENTAL
    assert state.last_sync_at == START
    assert state.last_error is None


def test_reported_total_bounds_the_run(session_factory):
    pages = {
        1: {"total": 150, "data": domain_rows(0, 100)},
        2: {"total": 150, "data": domain_rows(100, 100)},
        3: {"total": 150, "data": domain_rows(200, 100)},
    }
    seen: list[int] = []

    result = _synchronizer(session_factory, paged_transport(pages, seen=seen)).run(force=True)

    assert result.outcome is SyncOutcome.COMPLETED
    assert seen == [1, 2]


def test_page_budget_interrupts_and_next_run_resumes(session_factory):
    pages = {
        1: domain_rows(0, 100),
        2: domain_rows(100, 100),
        3: domain_rows(200, 100),
        4: domain_rows(300, 10),
    }
    seen: list[int] = []
    synchronizer = _synchronizer(
        session_factory, paged_transport(pages, seen=seen), max_pages_per_run=2
    )

    first = synchronizer.run(force=True)

    assert first.outcome is SyncOutcome.INTERRUPTED
    state = _state(session_factory)
    assert state.cursor_page == 3
    assert state.last_sync_at is None
    assert state.sync_mode is SyncMode.FULL
    assert state.total_domains == 200

    second = synchronizer.run()

    assert second.outcome is SyncOutcome.COMPLETED
    assert second.mode is SyncMode.FULL
    assert seen == [1, 2, 3, 4]
    state = _state(session_factory)
    assert state.cursor_page == 1
    assert state.total_domains == 310
    assert state.sync_mode is SyncMode.INCREMENTAL


def test_recent_sync_is_skipped_until_interval_elapses(session_factory):
    clock = FakeClock(START)
    seen: list[int] = []
    synchronizer = _synchronizer(
        session_factory, paged_transport({1: domain_rows(0, 5)}, seen=seen), clock=clock
    )
    synchronizer.run(force=True)

    clock.advance(timedelta(minutes=30))
    assert synchronizer.run().outcome is SyncOutcome.SKIPPED

    clock.advance(timedelta(hours=2))
    assert synchronizer.run().outcome is SyncOutcome.COMPLETED
    assert seen == [1, 1]


def test_rate_limit_sets_cooldown(session_factory):
    clock = FakeClock(START)
    transport = httpx.MockTransport(lambda request: httpx.Response(429))
    synchronizer = _synchronizer(session_factory, transport, clock=clock)

    with pytest.raises(RateLimitedError):
        synchronizer.run(force=True)

    state = _state(session_factory)
    assert state.next_sync_not_before == START + timedelta(hours=2)
    assert state.last_error.startswith("Rate limited by the catalog API (429)")

    clock.advance(timedelta(hours=1))
    assert synchronizer.run().outcome is SyncOutcome.SKIPPED


def test_force_overrides_cooldown(session_factory):
    clock = FakeClock(START)
    responses = iter([httpx.Response(429), httpx.Response(200, json=domain_rows(0, 3))])
    transport = httpx.MockTransport(lambda request: next(responses))
    synchronizer = _synchronizer(session_factory, transport, clock=clock)

    with pytest.raises(RateLimitedError):
        synchronizer.run(force=True)

    result = synchronizer.run(force=True)

    assert result.outcome is SyncOutcome.COMPLETED
    state = _state(session_factory)
    assert state.next_sync_not_before is None
    assert state.last_error is None
    assert state.total_domains == 3


def test_failure_keeps_committed_pages(session_factory):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json=domain_rows(0, 100))
        return httpx.Response(500)

    synchronizer = _synchronizer(session_factory, httpx.MockTransport(handler))

    with pytest.raises(UpstreamUnavailableError):
        synchronizer.run(force=True)

    state = _state(session_factory)
    assert state.total_domains == 100
    assert state.last_page == 1
    assert state.next_sync_not_before is None
    assert "500" in state.last_error


def test_incremental_run_stops_at_known_rows(session_factory):
    older = "2024-01-01T00:00:00Z"
    newer = "2024-06-01T00:00:00Z"
    seen: list[int] = []
    pages = {1: domain_rows(0, 100, created_at=older), 2: domain_rows(100, 20, created_at=older)}
    synchronizer = _synchronizer(session_factory, paged_transport(pages, seen=seen))
    synchronizer.run(force=True)

    assert _state(session_factory).source_created_at_max == datetime(2024, 1, 1, tzinfo=timezone.utc)

    pages[1] = domain_rows(500, 50, created_at=newer) + domain_rows(0, 50, created_at=older)
    seen.clear()
    result = synchronizer.run(bypass_schedule=True)

    assert result.mode is SyncMode.INCREMENTAL
    assert result.outcome is SyncOutcome.COMPLETED
    assert seen == [1, 2]
    assert _state(session_factory).source_created_at_max == datetime(2024, 6, 1, tzinfo=timezone.utc)

    seen.clear()
    result = synchronizer.run(bypass_schedule=True)

    assert seen == [1]
    assert result.pages_processed == 1


def test_reset_forces_full_resync(session_factory):
    pages = {1: domain_rows(0, 30)}
    synchronizer = _synchronizer(session_factory, paged_transport(pages))
    synchronizer.run(force=True)

    pages[1] = domain_rows(1000, 4)
    result = synchronizer.run(reset=True)

    assert result.mode is SyncMode.FULL
    with session_factory() as session:
        domains = sorted(session.execute(select(CatalogDomain.domain)).scalars())
    assert domains == [f"domain{index:04d}.com" for index in range(1000, 1004)]


def test_resync_is_idempotent_and_last_write_wins(session_factory):
    rows = domain_rows(0, 3)
    pages = {1: rows + [{"domain": "domain0000.com", "price": 42}]}
    synchronizer = _synchronizer(session_factory, paged_transport(pages))

    synchronizer.run(force=True)
    synchronizer.run(force=True)

    with session_factory() as session:
        assert CatalogRepository(session).count_domains() == 3
        stored = session.get(CatalogDomain, "domain0000.com")
        assert stored.price == 42
        assert stored.raw_data == {"domain": "domain0000.com", "price": 42}


def test_reset_catalog_clears_store_and_metadata(session_factory):
    mutations: list[bool] = []
    synchronizer = _synchronizer(
        session_factory,
        paged_transport({1: domain_rows(0, 5)}),
        on_mutated=lambda: mutations.append(True),
    )
    synchronizer.run(force=True)

    synchronizer.reset_catalog()

    state = _state(session_factory)
    assert state.total_domains == 0
    assert state.last_sync_at is None
    assert state.sync_mode is SyncMode.FULL
    assert mutations == [True, True]


def test_pending_resume_cursor_still_honours_staleness(session_factory):
    clock = FakeClock(START)
    pages = {1: domain_rows(0, 5)}
    seen: list[int] = []
    transport = paged_transport(pages, seen=seen)
    _synchronizer(session_factory, transport, clock=clock).run(force=True)

    pages.update({1: domain_rows(0, 100), 2: domain_rows(100, 100), 3: domain_rows(200, 5)})
    budgeted = _synchronizer(session_factory, transport, clock=clock, max_pages_per_run=1)
    clock.advance(timedelta(minutes=5))
    assert budgeted.run(force=True).outcome is SyncOutcome.INTERRUPTED
    assert _state(session_factory).cursor_page == 2

    clock.advance(timedelta(minutes=5))
    assert budgeted.run().outcome is SyncOutcome.SKIPPED

    clock.advance(timedelta(hours=2))
    assert budgeted.run().outcome is SyncOutcome.INTERRUPTED
    assert seen == [1, 1, 2]


def test_interrupted_incremental_pass_defers_watermark(session_factory):
    jan = "2024-01-01T00:00:00Z"
    mar = "2024-03-01T00:00:00Z"
    jun = "2024-06-01T00:00:00Z"
    pages = {1: domain_rows(0, 100, created_at=jan), 2: domain_rows(100, 10, created_at=jan)}
    seen: list[int] = []
    transport = paged_transport(pages, seen=seen)
    _synchronizer(session_factory, transport).run(force=True)

    pages.update(
        {
            1: domain_rows(500, 100, created_at=jun),
            2: domain_rows(600, 100, created_at=mar),
            3: domain_rows(700, 10, created_at=mar),
        }
    )
    seen.clear()
    budgeted = _synchronizer(session_factory, transport, max_pages_per_run=1)

    assert budgeted.run(bypass_schedule=True).outcome is SyncOutcome.INTERRUPTED
    assert _state(session_factory).source_created_at_max == datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert budgeted.run(bypass_schedule=True).outcome is SyncOutcome.INTERRUPTED
    assert _state(session_factory).source_created_at_max == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert budgeted.run(bypass_schedule=True).outcome is SyncOutcome.COMPLETED

    assert seen == [1, 2, 3]
    state = _state(session_factory)
    assert state.source_created_at_max == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert state.total_domains == 110 + 210
