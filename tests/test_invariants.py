"""Whole-database invariants checked after a mixed resolution run."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from conftest import FakeResolver, StubRelevanceScorer, update_reply
from newsmerge.inference.semantic_resolver import SemanticResolverAdapter
from newsmerge.models import ContentItem, Resolution, ResolutionRecord
from newsmerge.resolution.engine import ResolutionEngine
from newsmerge.resolution.thresholds import ThresholdClassifier, Thresholds


@pytest.fixture
async def resolved_world(session_factory, index, make_item, add_items):
    """Six items covering every terminal state, plus one left UNRESOLVED."""
    items = await add_items(
        make_item(slug="origin", headline="Origin story", sources=[{"url": "https://o.example"}]),
        make_item(slug="auto-dup", headline="Auto dup", day=1, sources=[{"url": "https://d.example"}]),
        make_item(slug="sem-dup", headline="Semantic dup", day=1.5),
        make_item(slug="update", headline="Update", day=2),
        make_item(slug="distinct", headline="Distinct", day=3),
        make_item(slug="fallback", headline="Fallback", day=4),
        make_item(slug="later", headline="Not yet", day=10),
    )
    origin = items[0]
    scorer = StubRelevanceScorer(
        {
            "auto-dup": [(origin, -300.0)],
            "sem-dup": [(origin, -150.0)],
            "update": [(origin, -120.0)],
            "distinct": [(origin, -90.0)],
            "fallback": [(origin, -100.0)],
        }
    )
    resolver = FakeResolver(
        {"decision": "DUPLICATE", "reasoning": "same"},
        update_reply(timestamp="2025-10-03T10:00:00Z"),
        {"decision": "NEW", "reasoning": "different"},
        TimeoutError(),
    )
    engine = ResolutionEngine(
        session_factory,
        index=index,
        scorer=scorer,
        classifier=ThresholdClassifier(Thresholds(new=-80.0, duplicate=-201.0, version="t")),
        adapter=SemanticResolverAdapter(resolver, timeout_seconds=5.0),
    )
    await engine.run(limit=6)

    async with session_factory() as session:
        result = await session.execute(select(ContentItem))
        return {item.slug: item for item in result.scalars().all()}


class TestInvariants:
    async def test_expected_states(self, resolved_world) -> None:
        assert {slug: item.resolution for slug, item in resolved_world.items()} == {
            "origin": Resolution.NEW,
            "auto-dup": Resolution.DUPLICATE_AUTO,
            "sem-dup": Resolution.DUPLICATE_SEMANTIC,
            "update": Resolution.MERGED_UPDATE,
            "distinct": Resolution.NEW,
            "fallback": Resolution.NEW,
            "later": Resolution.UNRESOLVED,
        }

    async def test_only_new_items_are_indexed(self, resolved_world, session_factory, index) -> None:
        async with session_factory() as session:
            for item in resolved_world.values():
                indexed = await index.contains(session, item.id)
                assert indexed == (item.resolution == Resolution.NEW), item.slug
            assert await index.count(session) == 3

    async def test_record_exists_iff_terminal(self, resolved_world, session_factory) -> None:
        async with session_factory() as session:
            result = await session.execute(select(ResolutionRecord.item_id))
            recorded = list(result.scalars().all())

        assert len(recorded) == len(set(recorded))
        terminal = {item.id for item in resolved_world.values() if item.resolution.is_terminal}
        assert set(recorded) == terminal

    async def test_canonical_targets_are_new(self, resolved_world) -> None:
        by_id = {item.id: item for item in resolved_world.values()}
        for item in resolved_world.values():
            if item.resolution == Resolution.NEW:
                assert item.canonical_id == item.id
            elif item.resolution.is_folded:
                assert item.canonical_id != item.id
                assert by_id[item.canonical_id].resolution == Resolution.NEW
            else:
                assert item.canonical_id is None

    async def test_updated_at_is_derived(self, resolved_world) -> None:
        for item in resolved_world.values():
            assert item.updated_at == item.derived_updated_at(), item.slug
        assert resolved_world["origin"].update_count == 1

    async def test_folded_items_have_no_history_of_their_own(self, resolved_world) -> None:
        for item in resolved_world.values():
            if item.resolution.is_folded:
                assert item.updates == []
