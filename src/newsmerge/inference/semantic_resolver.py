"""Semantic resolver: LLM adjudication of ambiguous matches.

Items whose top BM25 score falls between the two thresholds are the same
story often enough that blind publishing creates duplicates, and different
often enough that blind skipping loses news. For those, both texts go to an
LLM that answers NEW, DUPLICATE or UPDATE (with a structured update).

Two layers:
- ``LLMSemanticResolver`` talks to the model (pydantic-ai agent with
  ``NativeOutput``, OpenAI-compatible endpoint).
- ``SemanticResolverAdapter`` owns the failure policy: timeouts, errors and
  malformed responses fail safe to NEW; an UPDATE with an unusable payload is
  retried once and then degraded to DUPLICATE.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from openai import AsyncOpenAI
from pydantic import ValidationError
from pydantic_ai import Agent, NativeOutput
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from newsmerge.config import settings
from newsmerge.inference.schemas import ResolverResponse, UpdatePayload
from newsmerge.models.enums import SemanticDecision
from newsmerge.resolution.outcome import ItemSnapshot

logger = logging.getLogger(__name__)

# Sources of the NEW item shown to the model
MAX_PROMPT_SOURCES = 5


RESOLVER_SYSTEM_PROMPT = """\
You decide whether a newly reported item should be published, skipped, or \
merged into an item that was already published.

You are given the EXISTING item and the NEW item. Answer with exactly one decision.

NEW - Publish as a separate item if:
- It reports a different incident, vulnerability or event
- It involves a different actor, campaign or affected organization
- Its substantive details differ from the existing item

DUPLICATE - Skip if:
- It is the same incident with different wording
- It is the same story reported by a different outlet
- It adds no information beyond the existing item
- It is less detailed than the existing item

UPDATE - Merge into the existing item if:
- It reports new developments or consequences of the same event
- It adds technical details (identifiers, indicators, techniques) for the same event
- It reports additional victims of the same campaign
- It provides a fix, patch or mitigation for the same issue
- It adds expert analysis or attribution for the same event

For UPDATE you MUST provide the complete update object:
- timestamp: ISO 8601 time the development occurred (e.g. "2025-10-14T12:00:00Z")
- summary: brief 50-150 character summary of what is new
- content: 200-800 character description of the new information
- sources: 1-3 sources copied from the NEW item's source list (url, title, publisher).
  This list must not be empty.
- severity_change: one of "increased", "decreased", "unchanged"

Omit the update object for NEW and DUPLICATE. Always give a short reasoning.
"""


def _format_item(label: str, item: ItemSnapshot, *, with_sources: bool) -> str:
    parts = [
        f"{label} ({item.ingested_at.date().isoformat()}):\n",
        f"Headline: {item.headline}\n",
        f"Summary: {item.summary}\n",
        f"Body: {item.body}\n",
    ]
    if with_sources:
        if item.sources:
            parts.append("Sources:\n")
            for i, src in enumerate(item.sources[:MAX_PROMPT_SOURCES], 1):
                publisher = f" [{src['publisher']}]" if src.get("publisher") else ""
                parts.append(f"  {i}. {src.get('title') or '(untitled)'}{publisher}\n")
                parts.append(f"     {src['url']}\n")
        else:
            parts.append("Sources: none available\n")
    return "".join(parts)


def build_resolution_prompt(
    new_item: ItemSnapshot,
    matched_item: ItemSnapshot,
    *,
    feedback: str | None = None,
) -> str:
    """Build the user prompt for one adjudication."""
    prompt = (
        _format_item("EXISTING ITEM", matched_item, with_sources=False)
        + "\n"
        + _format_item("NEW ITEM", new_item, with_sources=True)
        + "\nAnalyze both items and provide your decision."
    )
    if feedback:
        prompt += (
            "\n\nYour previous answer was UPDATE but the update object was rejected: "
            f"{feedback}\n"
            "If you answer UPDATE again, include every required field and at least one "
            "source from the NEW item."
        )
    return prompt


class SemanticResolver(Protocol):
    """Anything that can adjudicate a NEW item against its best match."""

    async def resolve(
        self,
        new_item: ItemSnapshot,
        matched_item: ItemSnapshot,
        *,
        feedback: str | None = None,
    ) -> ResolverResponse: ...


def create_resolution_agent() -> Agent[None, ResolverResponse]:
    """Create the resolution agent.

    Network retries are disabled on the client: the adapter's timeout is the
    single budget for a call, and a failed call falls back to NEW.
    """
    client = AsyncOpenAI(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        timeout=settings.resolver_timeout_seconds,
        max_retries=0,
    )
    model = OpenAIChatModel(
        settings.model_resolver,
        provider=OpenAIProvider(openai_client=client),
    )

    return Agent(
        model,
        # response_format instead of tool calling; schema-constrained output
        output_type=NativeOutput(ResolverResponse),
        system_prompt=RESOLVER_SYSTEM_PROMPT,
        model_settings={"temperature": settings.resolver_temperature},
        retries=settings.resolver_output_retries,
    )


class LLMSemanticResolver:
    """Semantic resolver backed by an LLM.

    Usage:
        resolver = LLMSemanticResolver()
        response = await resolver.resolve(new_snapshot, matched_snapshot)
    """

    def __init__(self, agent: Agent[None, ResolverResponse] | None = None) -> None:
        self._agent = agent or create_resolution_agent()

    async def resolve(
        self,
        new_item: ItemSnapshot,
        matched_item: ItemSnapshot,
        *,
        feedback: str | None = None,
    ) -> ResolverResponse:
        prompt = build_resolution_prompt(new_item, matched_item, feedback=feedback)
        if settings.log_api_calls:
            logger.info(
                "Resolver call: new=%s matched=%s prompt_chars=%d",
                new_item.slug,
                matched_item.slug,
                len(prompt),
            )
        result = await self._agent.run(prompt)
        return result.output


@dataclass
class Adjudication:
    """What the adapter concluded for one ambiguous item."""

    decision: SemanticDecision
    reasoning: str
    update: UpdatePayload | None = None
    calls: int = 0
    failures: int = 0
    fallback: bool = False
    """True when the decision came from the fail-safe, not the resolver."""
    degraded: bool = False
    """True when an UPDATE was downgraded to DUPLICATE for a bad payload."""


def _describe_validation_error(e: ValidationError) -> str:
    problems = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "update"
        problems.append(f"{loc}: {err['msg']}")
    return "; ".join(problems)


class SemanticResolverAdapter:
    """Applies the failure policy around a SemanticResolver.

    - Call error, timeout or unparseable output -> NEW, reason recorded
    - UPDATE with a usable payload -> UPDATE
    - UPDATE with a missing or invalid payload -> one retry with the
      validation problems fed back; if still unusable -> DUPLICATE
    """

    def __init__(self, resolver: SemanticResolver, *, timeout_seconds: float | None = None) -> None:
        self._resolver = resolver
        self._timeout = (
            timeout_seconds if timeout_seconds is not None else settings.resolver_timeout_seconds
        )

    async def _call(
        self,
        new_item: ItemSnapshot,
        matched_item: ItemSnapshot,
        feedback: str | None,
    ) -> ResolverResponse:
        response = await asyncio.wait_for(
            self._resolver.resolve(new_item, matched_item, feedback=feedback),
            timeout=self._timeout,
        )
        # Stubs and alternate backends may hand back plain dicts
        return ResolverResponse.model_validate(response)

    @staticmethod
    def _validate_update(response: ResolverResponse) -> tuple[UpdatePayload | None, str | None]:
        if response.update is None:
            return None, "update object missing"
        try:
            return UpdatePayload.from_raw(response.update), None
        except ValidationError as e:
            return None, _describe_validation_error(e)

    async def adjudicate(self, new_item: ItemSnapshot, matched_item: ItemSnapshot) -> Adjudication:
        """Ask the resolver about ``new_item`` versus ``matched_item``.

        Never raises for resolver problems; only cancellation propagates.
        """
        try:
            response = await self._call(new_item, matched_item, None)
        except TimeoutError:
            logger.warning(
                "Resolver timed out after %.0fs for %s; defaulting to NEW",
                self._timeout,
                new_item.slug,
            )
            return Adjudication(
                decision=SemanticDecision.NEW,
                reasoning=f"Semantic resolver timed out after {self._timeout:.0f}s; defaulted to NEW",
                calls=1,
                failures=1,
                fallback=True,
            )
        except Exception as e:
            logger.warning("Resolver failed for %s; defaulting to NEW: %s", new_item.slug, e)
            return Adjudication(
                decision=SemanticDecision.NEW,
                reasoning=f"Semantic resolver error ({type(e).__name__}: {e}); defaulted to NEW",
                calls=1,
                failures=1,
                fallback=True,
            )

        if response.decision != SemanticDecision.UPDATE:
            return Adjudication(decision=response.decision, reasoning=response.reasoning, calls=1)

        payload, problem = self._validate_update(response)
        if payload is not None:
            return Adjudication(
                decision=SemanticDecision.UPDATE,
                reasoning=response.reasoning,
                update=payload,
                calls=1,
            )

        logger.info("Invalid UPDATE payload for %s (%s); retrying once", new_item.slug, problem)
        first_reasoning = response.reasoning

        try:
            retry = await self._call(new_item, matched_item, problem)
        except Exception as e:
            logger.warning(
                "Resolver retry failed for %s; treating as DUPLICATE: %s", new_item.slug, e
            )
            return Adjudication(
                decision=SemanticDecision.DUPLICATE,
                reasoning=(
                    f"{first_reasoning} [UPDATE payload invalid ({problem}); retry failed "
                    f"({type(e).__name__}); treated as DUPLICATE]"
                ).strip(),
                calls=2,
                failures=1,
                degraded=True,
            )

        if retry.decision != SemanticDecision.UPDATE:
            return Adjudication(decision=retry.decision, reasoning=retry.reasoning, calls=2)

        payload, retry_problem = self._validate_update(retry)
        if payload is not None:
            return Adjudication(
                decision=SemanticDecision.UPDATE,
                reasoning=retry.reasoning,
                update=payload,
                calls=2,
            )

        logger.warning(
            "UPDATE payload for %s still invalid after retry (%s); treating as DUPLICATE",
            new_item.slug,
            retry_problem,
        )
        return Adjudication(
            decision=SemanticDecision.DUPLICATE,
            reasoning=(
                f"{retry.reasoning} [UPDATE payload invalid after retry ({retry_problem}); "
                "treated as DUPLICATE]"
            ).strip(),
            calls=2,
            degraded=True,
        )
