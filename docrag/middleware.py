"""
Generation middleware
----------------------
Composes retrieval with an arbitrary text generator as an explicit
pipeline instead of patching the generator in place:

    request  --[request transforms]-->  generate()  --[response transforms]--> response

Transforms may be plain functions or coroutines.  They run in the order
they were registered and each receives the previous one's output.

Built-ins:
  - retrieval_context(retriever)  attaches ranked results to the request
  - cite_sources                  appends a citation for the top result
"""
from __future__ import annotations

import inspect
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from docrag.retrieval.retriever import Retriever
from docrag.retrieval.similarity import ScoredResult

SUMMARY_CHARS = 200
MIN_PHRASE_WORDS = 5

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_CITATION_MARKERS = ("Source:", "Reference:", "[source]", "citation")


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------

@dataclass
class GenerationRequest:
    query: str
    context: list[ScoredResult] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResponse:
    text: str
    request: GenerationRequest


RequestTransform = Callable[[GenerationRequest], Union[GenerationRequest, Awaitable[GenerationRequest]]]
ResponseTransform = Callable[[GenerationResponse], Union[GenerationResponse, Awaitable[GenerationResponse]]]
Generate = Callable[[GenerationRequest], Awaitable[str]]


async def _apply(fn: Callable, value: Any) -> Any:
    result = fn(value)
    if inspect.isawaitable(result):
        result = await result
    return result


class GenerationPipeline:
    """
    Usage:
        pipeline = GenerationPipeline(my_llm_call)
        pipeline.use_request(retrieval_context(retriever))
        pipeline.use_response(cite_sources)
        response = await pipeline.run(GenerationRequest(query="..."))
    """

    def __init__(self, generate: Generate) -> None:
        self.generate = generate
        self._request_transforms: list[RequestTransform] = []
        self._response_transforms: list[ResponseTransform] = []

    def use_request(self, fn: RequestTransform) -> "GenerationPipeline":
        self._request_transforms.append(fn)
        return self

    def use_response(self, fn: ResponseTransform) -> "GenerationPipeline":
        self._response_transforms.append(fn)
        return self

    async def run(self, request: GenerationRequest) -> GenerationResponse:
        for fn in self._request_transforms:
            request = await _apply(fn, request)
        text = await self.generate(request)
        response = GenerationResponse(text=text, request=request)
        for fn in self._response_transforms:
            response = await _apply(fn, response)
        return response


# ---------------------------------------------------------------------------
# Built-in request transforms
# ---------------------------------------------------------------------------

def retrieval_context(retriever: Retriever, k: int | None = None, min_score: float | None = None):
    """Request transform that attaches retrieved results as request.context."""

    async def attach(request: GenerationRequest) -> GenerationRequest:
        request.context = await retriever.retrieve(request.query, k=k, min_score=min_score)
        return request

    return attach


def build_prompt_context(results: list[ScoredResult]) -> str:
    """Number each result [1]..[N] and render it with its source line."""
    parts = []
    for i, result in enumerate(results, start=1):
        meta = result.metadata
        heading = " - ".join(str(v) for v in (meta.get("title"), meta.get("section")) if v)
        source = meta.get("source", "Unknown")
        parts.append(
            f"[{i}] {result.content}\nSource: {source}"
            + (f" | {heading}" if heading else "")
            + f" | score {result.score:.3f}"
        )
    return "\n\n---\n\n".join(parts)


# ---------------------------------------------------------------------------
# Built-in response transforms
# ---------------------------------------------------------------------------

def significant_phrases(text: str) -> list[str]:
    """Sentences of 5+ words; long ones reduced to the five middle words."""
    phrases = []
    for sentence in _SENTENCE_SPLIT.split(text.lower()):
        words = sentence.split()
        if len(words) < MIN_PHRASE_WORDS:
            continue
        if len(words) > 7:
            mid = len(words) // 2
            words = words[mid - 2: mid + 3]
        phrases.append(" ".join(words))
    return phrases


def uses_knowledge(response: str, knowledge: str) -> bool:
    lowered = response.lower()
    return any(phrase in lowered for phrase in significant_phrases(knowledge))


def includes_citation(response: str, metadata: dict) -> bool:
    lowered = response.lower()
    for key in ("source", "title"):
        value = metadata.get(key)
        if value and str(value).lower() in lowered:
            return True
    return any(marker in response for marker in _CITATION_MARKERS)


def source_line(metadata: dict) -> str:
    title = metadata.get("title")
    section = metadata.get("section")
    return (
        f"Source: {metadata.get('source') or 'Unknown'}"
        + (f" - {title}" if title else "")
        + (f" ({section})" if section else "")
    )


def cite_sources(response: GenerationResponse) -> GenerationResponse:
    """
    Make sure the answer credits the top retrieved result.

    If the answer quotes the result but does not cite it, a Source line is
    appended.  If it ignores the result, a short excerpt is appended as
    additional information, followed by the Source line.
    """
    if not response.text or not response.request.context:
        return response

    top = response.request.context[0]
    used = uses_knowledge(response.text, top.content)
    logger.debug(
        f"[Middleware] query={response.request.query[:50]!r} | knowledge_used={used} | "
        f"score={top.score:.3f} | source={top.metadata.get('source', 'Unknown')}"
    )

    if used:
        if not includes_citation(response.text, top.metadata):
            response.text += f"\n\n{source_line(top.metadata)}"
        return response

    summary = top.content[:SUMMARY_CHARS] + ("..." if len(top.content) > SUMMARY_CHARS else "")
    response.text += f"\n\nAdditional information: {summary}\n\n{source_line(top.metadata)}"
    return response
