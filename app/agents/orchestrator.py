# =============================================================================
# LangGraph Orchestrator — Chunk, Fan Out, Aggregate
# =============================================================================
#
# Runs one job end to end: chunk the document, send every chunk to every
# registered agent through the shared RateLimiter, fold the outcomes into
# one AnalysisResult, and persist it.
#
# GRAPH TOPOLOGY:
#   START ──▶ chunk ──▶ analyse ──▶ aggregate ──▶ END
#
# ORDERING: chunks in ascending sequence_index, agents in registry order.
# Every (chunk, agent) call is scheduled on the limiter in that order, so
# the limiter's FIFO is exactly chunk-then-agent order across the job.
#
# FAILURE HANDLING:
# - One failed (chunk, agent) call → AgentFailure marker, the job goes on
# - Every call failed               → job "failed", first error preserved
# - Anything else (bad payload, no chunks, no agents) → job "failed" with
#   the original message; the job is not retried
# - StorageError while persisting   → propagates to the Worker
#
# DESIGN DECISION: Result written BEFORE the terminal status.
# Pollers treat a terminal status as "the result is readable now"; writing
# in the other order would open a window where it is not.
#
# DESIGN DECISION: Graph compiled once per Orchestrator (not per module).
# The nodes are bound methods, so each Orchestrator carries its own store,
# limiter, registry and knowledge search. Tests build one with fakes.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from app.agents.base import Agent
from app.agents.registry import AgentRegistry
from app.config import Settings
from app.errors import JobFailure
from app.models.domain import (
    AgentFailure,
    AgentResult,
    AnalysisResult,
    Job,
    JobStatus,
)
from app.services.chunker import Chunk, Encoder, chunk_text
from app.services.job_store import JobStore
from app.services.knowledge import KnowledgeSearch, KnowledgeSnippet, search_or_empty
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

AgentOutcome = AgentResult | AgentFailure


# ---------------------------------------------------------------------------
# Pipeline State Schema
# ---------------------------------------------------------------------------


class PipelineState(TypedDict, total=False):
    """
    State that flows through the graph for one job.

    total=False so nodes only return the keys they update.
    NOTE: Holds non-serialisable objects (Job, Chunk). Safe as long as no
    checkpointer is configured on the graph.
    """

    # --- Input ---
    job: Job
    started_at: float

    # --- Intermediate ---
    chunks: list[Chunk]
    outcomes: list[AgentOutcome]
    chunking_ms: int
    analysis_ms: int

    # --- Output ---
    result: AnalysisResult


class Orchestrator:
    """Processes one job at a time from claim to terminal status."""

    def __init__(
        self,
        store: JobStore,
        rate_limiter: RateLimiter,
        registry: AgentRegistry,
        knowledge: KnowledgeSearch,
        settings: Settings,
        encoder: Encoder | None = None,
    ) -> None:
        self._store = store
        self._limiter = rate_limiter
        self._registry = registry
        self._knowledge = knowledge
        self._settings = settings
        self._encoder = encoder
        self._graph = self._build_graph()

    def _build_graph(self):
        builder = StateGraph(PipelineState)
        builder.add_node("chunk", self._chunk_node)
        builder.add_node("analyse", self._analyse_node)
        builder.add_node("aggregate", self._aggregate_node)

        builder.add_edge(START, "chunk")
        builder.add_edge("chunk", "analyse")
        builder.add_edge("analyse", "aggregate")
        builder.add_edge("aggregate", END)
        return builder.compile()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def analyze_document(self, job: Job) -> AnalysisResult:
        """
        Run the full analysis for a claimed job and persist the outcome.

        Returns the persisted AnalysisResult, whether completed or failed.

        Raises:
            StorageError: The job store could not be updated.
            InvalidStatusTransition: The job was not pending.
        """
        started_at = time.perf_counter()
        await self._store.set_status(job.id, JobStatus.RUNNING)
        logger.info(
            "[%s] Analysis started: %s (%s, mode=%s)",
            job.id, job.file_name, job.file_type, job.review_mode,
        )

        try:
            state = await self._graph.ainvoke(
                {"job": job, "started_at": started_at},
            )
            result = state["result"]
        except JobFailure as e:
            logger.error("[%s] Job failed: %s", job.id, e)
            result = AnalysisResult.failed(
                job, str(e), timings=_timings(started_at),
            )
        except Exception as e:
            logger.exception("[%s] Unexpected error during analysis", job.id)
            result = AnalysisResult.failed(
                job, str(e) or type(e).__name__, timings=_timings(started_at),
            )

        await self._store.set_result(job.id, result)
        await self._store.set_status(job.id, result.status)

        logger.info(
            "[%s] Analysis %s: score=%.1f, chunks=%d, results=%d, %dms",
            job.id, result.status.value, result.overall_score,
            result.chunk_count, len(result.agent_results),
            result.timings.get("totalDurationMs", 0),
        )
        return result

    # -------------------------------------------------------------------------
    # Graph Nodes
    # -------------------------------------------------------------------------

    async def _chunk_node(self, state: PipelineState) -> dict:
        job = state["job"]
        t0 = time.perf_counter()
        chunks = chunk_text(
            job.text(),
            max_tokens=self._settings.chunk_max_tokens,
            overlap=self._settings.chunk_overlap,
            encoder=self._encoder,
        )
        if not chunks:
            raise JobFailure("Document produced no valid chunks")
        if len(self._registry) == 0:
            raise JobFailure("No analysis agents are registered")

        logger.info(
            "[%s] Split into %d chunks (%d agents each)",
            job.id, len(chunks), len(self._registry),
        )
        return {"chunks": chunks, "chunking_ms": _elapsed_ms(t0)}

    async def _analyse_node(self, state: PipelineState) -> dict:
        job = state["job"]
        t0 = time.perf_counter()

        slots: list[tuple[Chunk, Agent]] = []
        futures: list[asyncio.Future] = []
        call_started: dict[int, float] = {}

        for chunk in state["chunks"]:
            context = await search_or_empty(
                self._knowledge,
                chunk.content[: self._settings.knowledge_query_chars],
                limit=self._settings.knowledge_top_k,
            )
            for agent in self._registry:
                slot = len(slots)
                slots.append((chunk, agent))
                futures.append(self._limiter.schedule(
                    self._make_call(agent, chunk, context, slot, call_started),
                ))

        settled = await asyncio.gather(*futures, return_exceptions=True)

        outcomes: list[AgentOutcome] = []
        for slot, ((chunk, agent), value) in enumerate(zip(slots, settled)):
            duration_ms = _elapsed_ms(call_started.get(slot, time.perf_counter()))
            outcomes.append(
                _to_outcome(job.id, agent.agent_id, chunk, value, duration_ms),
            )

        return {"outcomes": outcomes, "analysis_ms": _elapsed_ms(t0)}

    async def _aggregate_node(self, state: PipelineState) -> dict:
        job = state["job"]
        chunks = state["chunks"]
        outcomes = state["outcomes"]
        timings = {
            "chunkingDurationMs": state.get("chunking_ms", 0),
            "analysisDurationMs": state.get("analysis_ms", 0),
            **_timings(state["started_at"]),
        }

        successes = [o for o in outcomes if isinstance(o, AgentResult)]
        failures = [o for o in outcomes if isinstance(o, AgentFailure)]
        detailed = self._per_agent_breakdown(outcomes)

        if not successes:
            first_error = failures[0].error if failures else "no outcome"
            return {"result": AnalysisResult.failed(
                job,
                f"All {len(outcomes)} agent calls failed: {first_error}",
                agent_results=outcomes,
                detailed_analysis=detailed,
                chunk_count=len(chunks),
                timings=timings,
            )}

        if failures:
            logger.warning(
                "[%s] %d of %d agent calls failed",
                job.id, len(failures), len(outcomes),
            )

        confidence = sum(r.confidence for r in successes) / len(successes)
        result = AnalysisResult(
            analysis_id=job.id,
            document_name=job.file_name,
            review_mode=job.review_mode,
            status=JobStatus.COMPLETED,
            overall_score=round(confidence * 10, 1),
            confidence=confidence,
            summary=_chunk_summaries(chunks, successes),
            key_findings=_dedupe(f for r in successes for f in r.findings),
            recommendations=_dedupe(
                rec for r in successes for rec in r.recommendations
            ),
            agent_results=outcomes,
            detailed_analysis=detailed,
            chunk_count=len(chunks),
            timings=timings,
        )
        return {"result": result}

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _make_call(
        agent: Agent,
        chunk: Chunk,
        context: list[KnowledgeSnippet],
        slot: int,
        call_started: dict[int, float],
    ):
        async def call() -> AgentResult:
            # Restarted on every retry: duration covers the last attempt
            call_started[slot] = time.perf_counter()
            return await agent.analyze(chunk, context)

        return call

    def _per_agent_breakdown(
        self,
        outcomes: list[AgentOutcome],
    ) -> dict[str, dict[str, Any]]:
        breakdown: dict[str, dict[str, Any]] = {}
        for agent_id in self._registry.ids:
            mine = [o for o in outcomes if o.agent_id == agent_id]
            ok = [o for o in mine if isinstance(o, AgentResult)]
            breakdown[agent_id] = {
                "succeeded": len(ok),
                "failed": len(mine) - len(ok),
                "meanConfidence": (
                    round(sum(o.confidence for o in ok) / len(ok), 4) if ok else 0.0
                ),
                "durationMs": sum(o.duration_ms for o in mine),
            }
        return breakdown


# ---------------------------------------------------------------------------
# Module Helpers
# ---------------------------------------------------------------------------


def _to_outcome(
    job_id: str,
    agent_id: str,
    chunk: Chunk,
    value: Any,
    duration_ms: int,
) -> AgentOutcome:
    """Turn one settled limiter future into a result or a failure marker."""
    if isinstance(value, AgentResult):
        return value.model_copy(update={
            "agent_id": agent_id,
            "chunk_index": chunk.sequence_index,
            "duration_ms": duration_ms,
        })

    if isinstance(value, BaseException):
        error = str(value) or type(value).__name__
    else:
        error = f"Agent returned {type(value).__name__}, expected AgentResult"

    logger.warning(
        "[%s] Agent %s failed on chunk %d: %s",
        job_id, agent_id, chunk.sequence_index, error,
    )
    return AgentFailure(
        agent_id=agent_id,
        chunk_index=chunk.sequence_index,
        error=error,
        duration_ms=duration_ms,
    )


def _chunk_summaries(chunks: list[Chunk], successes: list[AgentResult]) -> str:
    """One "[Chunk k] ..." paragraph per chunk with at least one summary."""
    paragraphs = []
    for chunk in chunks:
        parts = [
            r.summary for r in successes
            if r.chunk_index == chunk.sequence_index and r.summary
        ]
        if parts:
            paragraphs.append(
                f"[Chunk {chunk.sequence_index + 1}] " + " ".join(parts)
            )
    return "\n\n".join(paragraphs)


def _dedupe(items) -> list[str]:
    """Drop repeats, keeping the first occurrence in order."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def _elapsed_ms(since: float) -> int:
    return int((time.perf_counter() - since) * 1000)


def _timings(started_at: float) -> dict[str, int]:
    return {"totalDurationMs": _elapsed_ms(started_at)}
