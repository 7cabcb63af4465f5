"""Tests for query construction and weighted BM25 scoring over the corpus index."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

from conftest import BASE_TIME
from newsmerge.models import Resolution
from newsmerge.resolution.corpus_index import FieldWeights
from newsmerge.resolution.outcome import ItemSnapshot
from newsmerge.resolution.scoring import (
    RelevanceScorer,
    build_match_query,
    extract_query_terms,
)

# Background documents keep IDF positive for the terms under test
BACKGROUND = [
    ("Central bank holds interest rates", "Policy makers kept rates steady."),
    ("Football club signs young striker", "The transfer fee was undisclosed."),
    ("Heatwave breaks temperature records", "Meteorologists warned of drought."),
    ("Museum unveils restored painting", "Conservators spent two years on it."),
    ("Airline expands routes to Asia", "Seven destinations were announced."),
    ("Farmers protest fertilizer prices", "Tractors blocked the motorway."),
]


def snapshot(headline: str, summary: str = "", body: str = "", *, day: float = 0) -> ItemSnapshot:
    return ItemSnapshot(
        id=uuid4(),
        slug=f"probe-{uuid4().hex[:8]}",
        headline=headline,
        summary=summary,
        body=body,
        ingested_at=BASE_TIME + timedelta(days=day),
    )


async def seed_background(make_item, add_items, *, day: float = 0) -> None:
    await add_items(
        *[
            make_item(headline=h, summary=s, day=day, resolution=Resolution.NEW)
            for h, s in BACKGROUND
        ]
    )


# ─────────────────────────────────────────────────────────────────────────────
# Query construction
# ─────────────────────────────────────────────────────────────────────────────


class TestExtractQueryTerms:
    def test_lowercases_and_deduplicates_in_first_seen_order(self) -> None:
        terms = extract_query_terms("Ransomware hits Hospital", "hospital RANSOMWARE network")
        assert terms == ["ransomware", "hits", "hospital", "network"]

    def test_drops_tokens_shorter_than_three(self) -> None:
        assert extract_query_terms("An IT op at 10 am") == []

    def test_keeps_stopwords(self) -> None:
        assert "the" in extract_query_terms("the breach and the fallout")

    def test_splits_on_punctuation_and_underscores(self) -> None:
        terms = extract_query_terms("CVE-2025-1234: remote_code execution")
        assert terms == ["cve", "2025", "1234", "remote", "code", "execution"]

    def test_empty_input(self) -> None:
        assert extract_query_terms("", "", "") == []

    def test_unicode_letters_are_tokens(self) -> None:
        assert extract_query_terms("Fuite de données à Zürich") == ["fuite", "données", "zürich"]


class TestBuildMatchQuery:
    def test_quotes_terms_and_joins_with_or(self) -> None:
        assert build_match_query(["alpha", "beta"]) == '"alpha" OR "beta"'

    def test_operator_words_are_quoted(self) -> None:
        query = build_match_query(["not", "near", "and"])
        assert query == '"not" OR "near" OR "and"'

    def test_empty(self) -> None:
        assert build_match_query([]) == ""


# ─────────────────────────────────────────────────────────────────────────────
# Scoring against a real FTS5 index
# ─────────────────────────────────────────────────────────────────────────────


class TestRelevanceScorer:
    async def test_matching_item_ranks_first_with_negative_score(
        self, db_session, index, make_item, add_items
    ) -> None:
        await seed_background(make_item, add_items)
        (target,) = await add_items(
            make_item(
                headline="Ransomware gang cripples regional hospital network",
                summary="Emergency rooms diverted patients after encryption attack.",
                resolution=Resolution.NEW,
            )
        )
        scorer = RelevanceScorer(index, lookback_days=30, limit=10, weights=FieldWeights())

        candidates = await scorer.score(
            db_session,
            snapshot(
                "Hospital network crippled by ransomware gang",
                "Patients diverted from emergency rooms.",
                day=1,
            ),
        )

        assert candidates
        assert candidates[0].item_id == target.id
        assert candidates[0].score < 0

    async def test_candidates_are_sorted_best_first(
        self, db_session, index, make_item, add_items
    ) -> None:
        await seed_background(make_item, add_items)
        close, loose = await add_items(
            make_item(
                headline="Satellite launch delayed by fuel leak",
                summary="Engineers found a fuel leak on the satellite launcher.",
                resolution=Resolution.NEW,
            ),
            make_item(
                headline="Launch window announced for lunar rover",
                summary="The rover mission targets spring.",
                resolution=Resolution.NEW,
            ),
        )
        scorer = RelevanceScorer(index, lookback_days=30, limit=10, weights=FieldWeights())

        candidates = await scorer.score(
            db_session,
            snapshot("Fuel leak delays satellite launch", "Satellite launcher fuel leak found.", day=1),
        )

        assert [c.item_id for c in candidates][:2] == [close.id, loose.id]
        assert candidates[0].score <= candidates[1].score

    async def test_headline_weight_dominates_body(
        self, db_session, index, make_item, add_items
    ) -> None:
        await seed_background(make_item, add_items)
        in_headline, in_body = await add_items(
            make_item(
                headline="Quantum router firmware",
                body="general filler words text",
                resolution=Resolution.NEW,
            ),
            make_item(
                headline="general filler words text",
                body="Quantum router firmware",
                resolution=Resolution.NEW,
            ),
        )
        probe = snapshot("Quantum router firmware", day=1)

        headline_heavy = RelevanceScorer(index, weights=FieldWeights(10.0, 5.0, 1.0))
        body_heavy = RelevanceScorer(index, weights=FieldWeights(1.0, 5.0, 10.0))

        assert (await headline_heavy.score(db_session, probe))[0].item_id == in_headline.id
        assert (await body_heavy.score(db_session, probe))[0].item_id == in_body.id

    async def test_lookback_window_excludes_older_items(
        self, db_session, index, make_item, add_items
    ) -> None:
        await seed_background(make_item, add_items)
        await add_items(
            make_item(
                headline="Volcano eruption grounds flights",
                resolution=Resolution.NEW,
                day=0,
            )
        )
        scorer = RelevanceScorer(index, lookback_days=30)

        inside = await scorer.score(db_session, snapshot("Volcano eruption grounds flights", day=30))
        outside = await scorer.score(db_session, snapshot("Volcano eruption grounds flights", day=31))

        assert inside
        assert outside == []

    async def test_items_ingested_later_are_not_candidates(
        self, db_session, index, make_item, add_items
    ) -> None:
        await add_items(
            make_item(headline="Volcano eruption grounds flights", resolution=Resolution.NEW, day=5)
        )
        scorer = RelevanceScorer(index, lookback_days=30)

        assert await scorer.score(db_session, snapshot("Volcano eruption grounds flights", day=4)) == []

    async def test_unindexed_items_are_never_candidates(
        self, db_session, index, make_item, add_items
    ) -> None:
        await add_items(
            make_item(headline="Volcano eruption grounds flights", resolution=Resolution.UNRESOLVED)
        )
        scorer = RelevanceScorer(index, lookback_days=30)

        assert await scorer.score(db_session, snapshot("Volcano eruption grounds flights", day=1)) == []

    async def test_item_never_matches_itself(
        self, db_session, index, make_item, add_items
    ) -> None:
        (item,) = await add_items(
            make_item(headline="Volcano eruption grounds flights", resolution=Resolution.NEW)
        )
        scorer = RelevanceScorer(index, lookback_days=30)
        own = ItemSnapshot(
            id=item.id,
            slug=item.slug,
            headline=item.headline,
            summary=item.summary,
            body=item.body,
            ingested_at=item.ingested_at,
        )

        assert await scorer.score(db_session, own) == []

    async def test_no_terms_means_no_candidates(self, db_session, index) -> None:
        scorer = RelevanceScorer(index)
        assert await scorer.score(db_session, snapshot("A to Z", "", "")) == []

    async def test_fts_syntax_in_text_is_harmless(
        self, db_session, index, make_item, add_items
    ) -> None:
        await add_items(
            make_item(headline='NOT "quoted" NEAR(this) AND that*', resolution=Resolution.NEW)
        )
        scorer = RelevanceScorer(index, lookback_days=30)

        candidates = await scorer.score(
            db_session, snapshot('NOT "quoted" NEAR(this) AND that*', day=1)
        )

        assert len(candidates) == 1
