"""Tests for read-only queries over resolved items."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from conftest import BASE_TIME
from newsmerge.inference.schemas import SourceRef, UpdatePayload
from newsmerge.models import Resolution, ResolutionMethod, SeverityChange
from newsmerge.resolution.outcome import ResolutionOutcome
from newsmerge.resolution.thresholds import Thresholds
from newsmerge.resolution.writer import ResolutionWriter
from newsmerge.services import queries

THRESHOLDS = Thresholds(new=-80.0, duplicate=-201.0, version="test-v1")


@pytest.fixture
async def world(session_factory, index, make_item, add_items):
    """Two canonical items on different days, one duplicate, one update, one pending."""
    old, recent, dup, upd, pending = await add_items(
        make_item(slug="old", headline="Old story", day=0),
        make_item(slug="recent", headline="Recent story", day=2),
        make_item(slug="dup", headline="Copy of old", day=3),
        make_item(slug="upd", headline="Old story grows", day=3),
        make_item(slug="pending", headline="Pending", day=4),
    )
    writer = ResolutionWriter(session_factory, index)

    def new(item) -> ResolutionOutcome:
        return ResolutionOutcome(
            item_id=item.id,
            resolution=Resolution.NEW,
            method=ResolutionMethod.AUTOMATIC,
            thresholds=THRESHOLDS,
        )

    await writer.apply(new(old))
    await writer.apply(new(recent))
    await writer.apply(
        ResolutionOutcome(
            item_id=dup.id,
            resolution=Resolution.DUPLICATE_AUTO,
            method=ResolutionMethod.AUTOMATIC,
            thresholds=THRESHOLDS,
            similarity_score=-250.0,
            matched_item_id=old.id,
        )
    )
    await writer.apply(
        ResolutionOutcome(
            item_id=upd.id,
            resolution=Resolution.MERGED_UPDATE,
            method=ResolutionMethod.SEMANTIC,
            thresholds=THRESHOLDS,
            similarity_score=-120.0,
            matched_item_id=old.id,
            reasoning="Adds victims",
            update=UpdatePayload(
                timestamp=datetime(2025, 10, 4, 6, 0, tzinfo=UTC),
                summary="Victims added",
                content="More victims were confirmed.",
                sources=[SourceRef(url="https://u.example/1")],
                severity_change=SeverityChange.INCREASED,
            ),
        )
    )
    return {"old": old, "recent": recent, "dup": dup, "upd": upd, "pending": pending}


class TestPublishable:
    async def test_only_new_items_newest_first(self, db_session, world) -> None:
        items = await queries.list_publishable(db_session)
        assert [i.slug for i in items] == ["recent", "old"]

    async def test_filter_by_day(self, db_session, world) -> None:
        items = await queries.list_publishable(db_session, on_date=BASE_TIME.date())
        assert [i.slug for i in items] == ["old"]

    async def test_pagination(self, db_session, world) -> None:
        items = await queries.list_publishable(db_session, limit=1, offset=1)
        assert [i.slug for i in items] == ["old"]


class TestLookups:
    async def test_get_item_by_slug(self, db_session, world) -> None:
        item = await queries.get_item_by_slug(db_session, "dup")
        assert item is not None
        assert item.id == world["dup"].id
        assert await queries.get_item_by_slug(db_session, "missing") is None

    async def test_list_items_by_resolution(self, db_session, world) -> None:
        items = await queries.list_items(db_session, resolution=Resolution.UNRESOLVED)
        assert [i.slug for i in items] == ["pending"]

    async def test_update_history(self, db_session, world) -> None:
        entries = await queries.get_update_history(db_session, world["old"].id)
        assert [e.summary for e in entries] == ["Victims added"]
        assert entries[0].origin_item_id == world["upd"].id

    async def test_folded_items(self, db_session, world) -> None:
        folded = await queries.list_folded_items(db_session, world["old"].id)
        assert sorted(i.slug for i in folded) == ["dup", "upd"]
        assert await queries.list_folded_items(db_session, world["recent"].id) == []

    async def test_recently_updated(self, db_session, world) -> None:
        items = await queries.list_recently_updated(db_session)
        assert [i.slug for i in items] == ["old"]
        assert items[0].updated_at == datetime(2025, 10, 4, 6, 0, tzinfo=UTC)

        later = await queries.list_recently_updated(
            db_session, since=datetime(2025, 10, 5, tzinfo=UTC)
        )
        assert later == []


class TestAuditQueries:
    async def test_resolution_counts_are_zero_filled(self, db_session, world) -> None:
        counts = await queries.resolution_counts(db_session)
        assert counts == {
            Resolution.UNRESOLVED: 1,
            Resolution.NEW: 2,
            Resolution.DUPLICATE_AUTO: 1,
            Resolution.DUPLICATE_SEMANTIC: 0,
            Resolution.MERGED_UPDATE: 1,
        }

    async def test_method_counts(self, db_session, world) -> None:
        counts = await queries.method_counts(db_session)
        assert counts[ResolutionMethod.AUTOMATIC] == 3
        assert counts[ResolutionMethod.SEMANTIC] == 1
        assert counts[ResolutionMethod.FALLBACK] == 0

    async def test_records_joined_to_items(self, db_session, world) -> None:
        rows = await queries.list_resolution_records(db_session, resolution=Resolution.MERGED_UPDATE)

        ((record, item),) = rows
        assert item.slug == "upd"
        assert record.reasoning == "Adds victims"
        assert record.threshold_version == "test-v1"
