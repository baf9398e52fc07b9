# =============================================================================
# Review Agent Base — Prompting and Response Parsing
# =============================================================================
#
# Every analysis agent takes one chunk (plus knowledge snippets) and returns
# one AgentResult. The orchestrator only depends on the Agent protocol:
#
#   Agent (Protocol)
#   └── ReviewAgent           — system prompt + JSON response contract
#       ├── TheoreticalAgent  (app/agents/reviewers.py)
#       ├── MathematicalAgent
#       └── EpistemicAgent
#
# RESPONSE CONTRACT: agents ask the model for a single JSON object:
#   {"summary": str, "confidence": 0..1, "findings": [str],
#    "recommendations": [str]}
# Models often wrap JSON in Markdown fences or add a sentence around it;
# parse_agent_response() tolerates both. Anything else raises
# AgentOutputError, which the orchestrator records as an AgentFailure.
#
# Agents never catch completion-service errors: a TransientServiceError
# must reach the RateLimiter so the call is retried in place.
# =============================================================================

from __future__ import annotations

import json
import logging
import re
from typing import Any, Protocol

from app.errors import AgentOutputError
from app.models.domain import AgentResult
from app.services.chunker import Chunk
from app.services.knowledge import KnowledgeSnippet
from app.services.llm import CompletionService

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

RESPONSE_FORMAT = (
    "Respond with a single JSON object and nothing else:\n"
    "{\n"
    '  "summary": "two or three sentences on this section",\n'
    '  "confidence": 0.0-1.0,\n'
    '  "findings": ["specific issue or observation", ...],\n'
    '  "recommendations": ["concrete change the authors should make", ...]\n'
    "}"
)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class Agent(Protocol):
    """One independent reviewer of document chunks."""

    agent_id: str

    async def analyze(
        self,
        chunk: Chunk,
        context: list[KnowledgeSnippet],
    ) -> AgentResult:
        """
        Review one chunk.

        Raises:
            TransientServiceError: The completion service throttled the call.
            AgentOutputError: The model's answer could not be interpreted.
        """
        ...


# ---------------------------------------------------------------------------
# Base Implementation
# ---------------------------------------------------------------------------


class ReviewAgent:
    """
    LLM-backed reviewer. Subclasses set `agent_id`, `name`,
    `system_prompt` and `default_confidence`.
    """

    agent_id: str = ""
    name: str = ""
    system_prompt: str = ""
    # Used when the model omits "confidence"
    default_confidence: float = 0.5

    def __init__(
        self,
        llm: CompletionService,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def analyze(
        self,
        chunk: Chunk,
        context: list[KnowledgeSnippet],
    ) -> AgentResult:
        response = await self._llm.complete(
            self.build_prompt(chunk, context),
            system=self.system_prompt,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        logger.debug(
            "%s answered chunk %d: model=%s, tokens=%d+%d",
            self.agent_id, chunk.sequence_index,
            response.model, response.prompt_tokens, response.completion_tokens,
        )

        parsed = parse_agent_response(
            response.text, default_confidence=self.default_confidence,
        )
        return AgentResult(
            agent_id=self.agent_id,
            chunk_index=chunk.sequence_index,
            **parsed,
        )

    def build_prompt(self, chunk: Chunk, context: list[KnowledgeSnippet]) -> str:
        sections = []
        if context:
            sections.append(
                "Related reference material:\n\n" + format_context(context)
            )
        sections.append(
            f"Document section {chunk.sequence_index + 1} "
            f"({chunk.token_count} tokens):\n\n{chunk.content}"
        )
        sections.append(RESPONSE_FORMAT)
        return "\n\n---\n\n".join(sections)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(agent_id={self.agent_id!r})"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_context(snippets: list[KnowledgeSnippet]) -> str:
    """
    Number knowledge snippets as [1], [2], ... with their source.

    Example:
        [1] (Weinberg, QFT Vol. 1):
        The S-matrix is unitary ...
    """
    parts = []
    for i, snippet in enumerate(snippets, 1):
        label = f" ({snippet.source})" if snippet.source else ""
        parts.append(f"[{i}]{label}:\n{snippet.content}")
    return "\n\n".join(parts)


def parse_agent_response(
    text: str,
    default_confidence: float = 0.5,
) -> dict[str, Any]:
    """
    Extract the review fields from a model answer.

    Returns a dict with summary, confidence (clamped to [0, 1]), findings
    and recommendations, ready to splat into AgentResult.

    Raises:
        AgentOutputError: No JSON object could be recovered, or a field has
            the wrong shape.
    """
    data = _load_json_object(text)

    raw_confidence = data.get("confidence", default_confidence)
    try:
        confidence = float(raw_confidence)
    except (TypeError, ValueError) as e:
        raise AgentOutputError(f"Invalid confidence value: {raw_confidence!r}") from e
    if confidence != confidence:  # NaN
        raise AgentOutputError("Invalid confidence value: NaN")

    findings = _as_text_list(data.get("findings"), "findings")
    if not findings:
        # Older prompt shape: observations / weaknesses
        findings = (
            _as_text_list(data.get("observations"), "observations")
            + _as_text_list(data.get("weaknesses"), "weaknesses")
        )

    summary = data.get("summary", "")
    if not isinstance(summary, str):
        raise AgentOutputError(f"Invalid summary type: {type(summary).__name__}")

    return {
        "summary": summary.strip(),
        "confidence": min(1.0, max(0.0, confidence)),
        "findings": findings,
        "recommendations": _as_text_list(
            data.get("recommendations"), "recommendations",
        ),
    }


def _load_json_object(text: str) -> dict[str, Any]:
    candidates = []
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    candidates.append(text)
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate.strip())
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    raise AgentOutputError(
        f"Agent response is not a JSON object: {text[:120]!r}"
    )


def _as_text_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise AgentOutputError(
            f"Invalid {field_name} type: {type(value).__name__}"
        )

    items = []
    for item in value:
        if isinstance(item, dict):
            # {"issue": ..., "severity": ...} style entries
            item = (
                item.get("description") or item.get("issue")
                or item.get("text") or json.dumps(item, sort_keys=True)
            )
        text = str(item).strip()
        if text:
            items.append(text)
    return items
