"""Tests for the FastAPI application."""

from datetime import UTC, datetime
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from newsmerge import __version__
from newsmerge.app import app
from newsmerge.db import get_session
from newsmerge.models import Resolution, SeverityChange, UpdateEntry


@pytest.fixture
async def client(session_factory):
    async def _session_override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session_override
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
async def story(make_item, add_items, session_factory):
    """A canonical item with one duplicate and one update."""
    canonical, dup, upd, pending = await add_items(
        make_item(
            slug="canonical",
            headline="Ransomware hits hospital",
            resolution=Resolution.NEW,
            sources=[{"url": "https://a.example/1", "publisher": "A News"}],
        ),
        make_item(slug="dup", headline="Hospital hit by ransomware", day=1),
        make_item(slug="upd", headline="Hospital ransomware: more victims", day=2),
        make_item(slug="pending", headline="Unrelated pending item", day=2),
    )
    async with session_factory() as session, session.begin():
        c = await session.get(type(canonical), canonical.id)
        assert c is not None
        for folded, resolution in ((dup, Resolution.DUPLICATE_AUTO), (upd, Resolution.MERGED_UPDATE)):
            item = await session.get(type(folded), folded.id)
            assert item is not None
            item.resolution = resolution
            item.canonical_id = canonical.id
        c.updates.append(
            UpdateEntry(
                origin_item_id=upd.id,
                position=0,
                timestamp=datetime(2025, 10, 3, 12, tzinfo=UTC),
                summary="More victims",
                content="Two more hospitals affected.",
                severity_change=SeverityChange.INCREASED,
                sources=[{"url": "https://b.example/2", "title": "B", "publisher": "B"}],
            )
        )
        c.updated_at = c.derived_updated_at()
    return canonical


async def test_health(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


class TestItemRoutes:
    async def test_list_returns_only_publishable(self, client, story) -> None:
        response = await client.get("/items")

        assert response.status_code == 200
        body = response.json()
        assert [i["slug"] for i in body] == ["canonical"]
        assert body[0]["update_count"] == 1
        assert body[0]["updated_at"].startswith("2025-10-03T12:00:00")

    async def test_list_filters_by_date(self, client, story) -> None:
        assert (await client.get("/items", params={"date": "2025-10-01"})).json() != []
        assert (await client.get("/items", params={"date": "2025-10-02"})).json() == []

    async def test_invalid_date_rejected(self, client) -> None:
        response = await client.get("/items", params={"date": "yesterday"})
        assert response.status_code == 422

    async def test_item_detail(self, client, story) -> None:
        response = await client.get(f"/items/{story.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["resolution"] == "NEW"
        assert body["canonical_id"] == str(story.id)
        assert body["sources"][0]["publisher"] == "A News"
        assert body["updates"][0]["severity_change"] == "increased"

    async def test_unknown_item_is_404(self, client) -> None:
        response = await client.get(f"/items/{uuid4()}")
        assert response.status_code == 404

    async def test_update_history(self, client, story) -> None:
        response = await client.get(f"/items/{story.id}/updates")

        assert response.status_code == 200
        assert [u["summary"] for u in response.json()] == ["More victims"]

    async def test_folded_items(self, client, story) -> None:
        response = await client.get(f"/items/{story.id}/folded")

        assert response.status_code == 200
        assert [(i["slug"], i["resolution"]) for i in response.json()] == [
            ("dup", "DUPLICATE_AUTO"),
            ("upd", "MERGED_UPDATE"),
        ]
