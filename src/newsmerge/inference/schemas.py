"""Pydantic schemas for the semantic resolver.

``ResolverResponse`` is what the LLM is asked to produce. It is lenient on
purpose: models drift on casing, legacy labels and field names, and a
response that parses but carries a broken update is better handled by the
adapter (retry, then degrade) than by a hard parse failure.

``UpdatePayload`` is the strict shape that is allowed into an item's update
history.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field, field_validator

from newsmerge.models.enums import SemanticDecision, SeverityChange

# Labels some prompts/models still emit for "same story, nothing new"
_DECISION_ALIASES = {
    "SKIP": SemanticDecision.DUPLICATE.value,
    "SKIP-LLM": SemanticDecision.DUPLICATE.value,
    "SKIP-UPDATE": SemanticDecision.UPDATE.value,
    "MERGE": SemanticDecision.UPDATE.value,
}


def _normalize_decision(v: Any) -> Any:
    if isinstance(v, str):
        label = v.strip().upper().replace("_", "-")
        return _DECISION_ALIASES.get(label, label)
    return v


def _coerce_to_string(v: Any) -> str:
    if v is None:
        return ""
    return str(v)


def _coerce_sources(v: Any) -> Any:
    # null or a bare string means "no sources"; the payload check rejects it
    if v is None or isinstance(v, str):
        return []
    if isinstance(v, list):
        return [{"url": s} if isinstance(s, str) else s for s in v if s is not None]
    return v


class SourceRef(BaseModel):
    """A provenance reference carried by an update."""

    url: str = Field(min_length=1)
    title: str = ""
    publisher: str = Field(
        default="",
        validation_alias=AliasChoices("publisher", "website"),
    )
    date: str | None = None


class RawSource(BaseModel):
    """A source as the LLM returned it, before validation."""

    url: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="", description="Source URL copied from the NEW item's source list"
    )
    title: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="", description="Source title"
    )
    publisher: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="",
        validation_alias=AliasChoices("publisher", "website"),
        description="Publisher or website name, if known",
    )


class RawUpdate(BaseModel):
    """The update object as the LLM returned it."""

    timestamp: str | None = Field(
        default=None,
        validation_alias=AliasChoices("timestamp", "datetime"),
        description="ISO 8601 time the new development occurred, e.g. 2025-10-14T12:00:00Z",
    )
    summary: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="", description="Brief 50-150 character summary of what is new"
    )
    content: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="", description="Detailed 200-800 character description of the new information"
    )
    sources: Annotated[list[RawSource], BeforeValidator(_coerce_sources)] = Field(  # pyright: ignore[reportUnknownVariableType]
        default_factory=list,
        description="1-3 sources from the NEW item; must not be empty",
    )
    severity_change: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="",
        validation_alias=AliasChoices("severity_change", "severityChange"),
        description="One of: increased, decreased, unchanged",
    )


class ResolverResponse(BaseModel):
    """Structured output of the semantic resolver."""

    decision: Annotated[SemanticDecision, BeforeValidator(_normalize_decision)] = Field(
        description="NEW, DUPLICATE or UPDATE"
    )
    reasoning: Annotated[str, BeforeValidator(_coerce_to_string)] = Field(
        default="", description="Brief explanation of the decision"
    )
    update: RawUpdate | None = Field(
        default=None, description="Required when decision is UPDATE, otherwise omitted"
    )

    @field_validator("update", mode="before")
    @classmethod
    def _non_object_is_missing(cls, v: Any) -> Any:
        if isinstance(v, (dict, RawUpdate)):
            return v
        return None


class UpdatePayload(BaseModel):
    """A validated update, safe to append to a canonical item.

    Length guidance in the prompt is advisory; only emptiness is enforced.
    """

    timestamp: datetime
    summary: str = Field(min_length=1)
    content: str = Field(min_length=1)
    sources: list[SourceRef] = Field(min_length=1)
    severity_change: SeverityChange

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @field_validator("summary", "content")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("severity_change", mode="before")
    @classmethod
    def _lower_severity(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @classmethod
    def from_raw(cls, raw: RawUpdate) -> UpdatePayload:
        """Validate an LLM update.

        Sources with an empty or placeholder URL are dropped before the
        non-empty check, so an update citing only ``"unknown"`` is rejected.

        Raises:
            pydantic.ValidationError: If the update is unusable.
        """
        sources = [
            {"url": s.url.strip(), "title": s.title.strip(), "publisher": s.publisher.strip()}
            for s in raw.sources
            if s.url.strip() and s.url.strip().lower() != "unknown"
        ]
        return cls.model_validate(
            {
                "timestamp": raw.timestamp,
                "summary": raw.summary,
                "content": raw.content,
                "sources": sources,
                "severity_change": raw.severity_change,
            }
        )

    def source_dicts(self) -> list[dict[str, Any]]:
        return [s.model_dump() for s in self.sources]
