"""LLM inference for semantic resolution of ambiguous matches."""

from newsmerge.inference.schemas import (
    RawSource,
    RawUpdate,
    ResolverResponse,
    SourceRef,
    UpdatePayload,
)
from newsmerge.inference.semantic_resolver import (
    Adjudication,
    LLMSemanticResolver,
    SemanticResolver,
    SemanticResolverAdapter,
)

__all__ = [
    "Adjudication",
    "LLMSemanticResolver",
    "RawSource",
    "RawUpdate",
    "ResolverResponse",
    "SemanticResolver",
    "SemanticResolverAdapter",
    "SourceRef",
    "UpdatePayload",
]
