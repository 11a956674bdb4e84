from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import httpx
import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db


@pytest.fixture
def sample_catalog_payload() -> dict[str, object]:
    path = Path(__file__).parent / "data" / "sample_catalog_page.json"
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = build_db_components(f"sqlite:///{tmp_path / 'catalog.db'}")
    init_db(bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path / 'catalog.db'}",
        catalog_api_url="https://catalog.test/api/domains",
        catalog_api_key="test-key",
        sync_page_size=100,
        sync_page_delay_seconds=0,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    monkeypatch.setattr("ingestion.client.settings", settings)
    monkeypatch.setattr("ingestion.service.settings", settings)
    return settings


class FakeClock:
    """Manually advanced UTC clock for sync scheduling tests."""

    def __init__(self, start) -> None:
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


def domain_rows(start: int, count: int, *, created_at: str | None = None) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for index in range(start, start + count):
        row: dict[str, object] = {
            "domain": f"domain{index:04d}.com",
            "available": index % 2 == 0,
            "price": float(index),
            "currency": "EUR",
        }
        if created_at is not None:
            row["created_at"] = created_at
        rows.append(row)
    return rows


def paged_transport(pages: dict[int, object], *, seen: list[int] | None = None) -> httpx.MockTransport:
    """Serve ``pages[page]`` as JSON; unknown pages return an empty list."""

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if seen is not None:
            seen.append(page)
        return httpx.Response(200, json=pages.get(page, {"data": []}))

    return httpx.MockTransport(handler)
