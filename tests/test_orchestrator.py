# =============================================================================
# Unit Tests — Orchestrator
# =============================================================================
#
# Runs whole jobs through the LangGraph pipeline with scripted agents, an
# in-memory job store, a one-token-per-character encoder and a virtual
# clock for the rate limiter.
# =============================================================================

from __future__ import annotations

import asyncio
import base64

import pytest
from conftest import CharEncoder, FakeClock, ScriptedAgent, StaticKnowledge

from app.agents.orchestrator import Orchestrator
from app.agents.registry import AgentRegistry
from app.errors import AgentOutputError, TransientServiceError
from app.models.domain import AgentFailure, AgentResult, Job, JobStatus
from app.services.knowledge import KnowledgeSnippet
from app.services.rate_limiter import RateLimiter


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _job(text: str, job_id: str = "job-1") -> Job:
    return Job(
        id=job_id,
        document_content=base64.b64encode(text.encode()).decode(),
        content_encoding="base64",
        file_name="draft.txt",
        file_type="txt",
    )


def _orchestrator(store, settings, agents, clock=None, knowledge=None, interval_ms=0):
    clock = clock or FakeClock()
    limiter = RateLimiter(
        min_interval_ms=interval_ms, max_retries=2, clock=clock, sleep=clock.sleep,
    )
    return Orchestrator(
        store=store,
        rate_limiter=limiter,
        registry=AgentRegistry(agents),
        knowledge=knowledge or StaticKnowledge(),
        settings=settings,
        encoder=CharEncoder(),
    )


async def _process(store, orchestrator, job):
    await store.enqueue(job)
    claimed = await store.dequeue()
    return await orchestrator.analyze_document(claimed)


# test_settings: chunk_max_tokens=10, chunk_overlap=2 → stride 8.
# 18 characters → windows [0, 10) and [8, 18): two chunks.
TWO_CHUNKS = "abcdefghijklmnopqr"


# ---------------------------------------------------------------------------
# Test: Happy Path and Ordering
# ---------------------------------------------------------------------------


class TestAnalyzeDocument:
    def test_completed_job_has_result_and_status(self, store, test_settings):
        agents = [ScriptedAgent("theoretical"), ScriptedAgent("mathematical")]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.status == JobStatus.COMPLETED
        assert result.chunk_count == 2
        assert len(result.agent_results) == 4
        assert _run(store.get_status("job-1")) == JobStatus.COMPLETED
        assert _run(store.get_result("job-1")) == result

    def test_calls_run_chunk_then_agent(self, store, test_settings):
        calls: list = []
        agents = [
            ScriptedAgent("theoretical", calls=calls),
            ScriptedAgent("mathematical", calls=calls),
        ]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert [(a, c) for a, c, _ in calls] == [
            ("theoretical", 0), ("mathematical", 0),
            ("theoretical", 1), ("mathematical", 1),
        ]
        assert [(r.chunk_index, r.agent_id) for r in result.agent_results] == [
            (0, "theoretical"), (0, "mathematical"),
            (1, "theoretical"), (1, "mathematical"),
        ]

    def test_four_calls_at_two_second_spacing_take_six_seconds(self, store, test_settings):
        clock = FakeClock()
        agents = [ScriptedAgent("theoretical"), ScriptedAgent("mathematical")]
        orch = _orchestrator(store, test_settings, agents, clock=clock, interval_ms=2000)

        _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert clock.now >= 6.0
        assert orch._limiter.recent_dispatches == [0.0, 2.0, 4.0, 6.0]

    def test_result_written_before_terminal_status(self, store, fake_redis, test_settings):
        orch = _orchestrator(store, test_settings, [ScriptedAgent("theoretical")])

        _run(_process(store, orch, _job(TWO_CHUNKS)))

        writes = fake_redis.writes
        result_at = writes.index("analysis:result:job-1")
        last_status_at = max(
            i for i, key in enumerate(writes) if key == "analysis:status:job-1"
        )
        assert result_at < last_status_at

    def test_knowledge_fetched_once_per_chunk(self, store, test_settings):
        snippet = KnowledgeSnippet(content="Known result", source="textbook")
        knowledge = StaticKnowledge([snippet, snippet, snippet])
        calls: list = []
        agents = [
            ScriptedAgent("theoretical", calls=calls),
            ScriptedAgent("mathematical", calls=calls),
        ]
        orch = _orchestrator(store, test_settings, agents, knowledge=knowledge)

        _run(_process(store, orch, _job(TWO_CHUNKS)))

        # knowledge_query_chars=5, knowledge_top_k=2
        assert knowledge.queries == [("abcde", 2), ("ijklm", 2)]
        assert all(len(context) == 2 for _, _, context in calls)

    def test_knowledge_failure_degrades_to_empty_context(self, store, test_settings):
        class BrokenKnowledge:
            async def search(self, query, limit=5):
                raise ConnectionError("chroma down")

        calls: list = []
        orch = _orchestrator(
            store, test_settings, [ScriptedAgent("theoretical", calls=calls)],
            knowledge=BrokenKnowledge(),
        )

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.status == JobStatus.COMPLETED
        assert [context for _, _, context in calls] == [[], []]


# ---------------------------------------------------------------------------
# Test: Aggregation
# ---------------------------------------------------------------------------


class TestAggregation:
    def test_scores_are_mean_confidence(self, store, test_settings):
        agents = [
            ScriptedAgent("theoretical", lambda c: {"confidence": 0.9}),
            ScriptedAgent("mathematical", lambda c: {"confidence": 0.5}),
        ]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.confidence == pytest.approx(0.7)
        assert result.overall_score == 7.0

    def test_findings_deduplicated_first_occurrence_wins(self, store, test_settings):
        agents = [
            ScriptedAgent("theoretical", lambda c: {
                "findings": ["Unstated assumption", f"Issue in chunk {c.sequence_index}"],
                "recommendations": ["Add a limitations section"],
            }),
            ScriptedAgent("mathematical", lambda c: {
                "findings": ["Unstated assumption", "Units mismatch"],
                "recommendations": ["Add a limitations section", "Show step 3"],
            }),
        ]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.key_findings == [
            "Unstated assumption", "Issue in chunk 0", "Units mismatch", "Issue in chunk 1",
        ]
        assert result.recommendations == ["Add a limitations section", "Show step 3"]

    def test_summary_has_one_paragraph_per_chunk(self, store, test_settings):
        agents = [ScriptedAgent("theoretical"), ScriptedAgent("mathematical")]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.summary == (
            "[Chunk 1] theoretical on chunk 0 mathematical on chunk 0\n\n"
            "[Chunk 2] theoretical on chunk 1 mathematical on chunk 1"
        )

    def test_detailed_analysis_per_agent(self, store, test_settings):
        def flaky(chunk):
            if chunk.sequence_index == 1:
                raise AgentOutputError("unparsable")
            return {"confidence": 0.6}

        agents = [ScriptedAgent("theoretical"), ScriptedAgent("mathematical", flaky)]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.detailed_analysis["theoretical"]["succeeded"] == 2
        assert result.detailed_analysis["theoretical"]["meanConfidence"] == 0.8
        assert result.detailed_analysis["mathematical"]["succeeded"] == 1
        assert result.detailed_analysis["mathematical"]["failed"] == 1
        assert "durationMs" in result.detailed_analysis["mathematical"]

    def test_timings_recorded(self, store, test_settings):
        orch = _orchestrator(store, test_settings, [ScriptedAgent("theoretical")])
        result = _run(_process(store, orch, _job(TWO_CHUNKS)))
        assert "totalDurationMs" in result.timings


# ---------------------------------------------------------------------------
# Test: Failure Handling
# ---------------------------------------------------------------------------


class TestFailures:
    def test_one_failed_call_leaves_job_completed(self, store, test_settings):
        def breaks_on_second_chunk(chunk):
            if chunk.sequence_index == 1:
                raise ValueError("model refused")
            return {}

        agents = [
            ScriptedAgent("theoretical"),
            ScriptedAgent("mathematical", breaks_on_second_chunk),
        ]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.status == JobStatus.COMPLETED
        ok = [r for r in result.agent_results if isinstance(r, AgentResult)]
        failed = [r for r in result.agent_results if isinstance(r, AgentFailure)]
        assert len(ok) == 3
        assert len(failed) == 1
        assert (failed[0].chunk_index, failed[0].agent_id) == (1, "mathematical")
        assert failed[0].error == "model refused"

    def test_throttled_call_retried_without_failure_marker(self, store, test_settings):
        attempts = {"n": 0}

        def throttled_twice(chunk):
            attempts["n"] += 1
            if attempts["n"] <= 2:
                raise TransientServiceError("429 Too Many Requests")
            return {"confidence": 0.6}

        clock = FakeClock()
        agents = [ScriptedAgent("theoretical", throttled_twice), ScriptedAgent("mathematical")]
        orch = _orchestrator(store, test_settings, agents, clock=clock)

        result = _run(_process(store, orch, _job("abcdefgh")))

        assert result.status == JobStatus.COMPLETED
        assert attempts["n"] == 3
        assert all(isinstance(r, AgentResult) for r in result.agent_results)
        assert [r.agent_id for r in result.agent_results] == ["theoretical", "mathematical"]
        assert 1.0 in clock.sleeps and 2.0 in clock.sleeps

    def test_exhausted_throttling_becomes_failure_marker(self, store, test_settings):
        calls: list = []

        def always_throttled(chunk):
            raise TransientServiceError("429 Too Many Requests")

        agents = [
            ScriptedAgent("theoretical", calls=calls),
            ScriptedAgent("mathematical", always_throttled, calls=calls),
        ]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job("abcdefgh")))

        assert result.status == JobStatus.COMPLETED
        kinds = [type(r).__name__ for r in result.agent_results]
        assert kinds == ["AgentResult", "AgentFailure"]
        assert result.agent_results[1].error == "429 Too Many Requests"
        # one attempt plus max_retries=2
        assert [c[0] for c in calls].count("mathematical") == 3

    def test_failure_marker_survives_storage(self, store, test_settings):
        def always_fails(chunk):
            raise ValueError("nope")

        agents = [ScriptedAgent("theoretical"), ScriptedAgent("mathematical", always_fails)]
        orch = _orchestrator(store, test_settings, agents)

        _run(_process(store, orch, _job(TWO_CHUNKS)))
        stored = _run(store.get_result("job-1"))

        kinds = [type(r).__name__ for r in stored.agent_results]
        assert kinds == ["AgentResult", "AgentFailure", "AgentResult", "AgentFailure"]

    def test_all_calls_failing_fails_job_with_first_error(self, store, test_settings):
        def fails(chunk):
            raise ValueError(f"broken chunk {chunk.sequence_index}")

        agents = [ScriptedAgent("theoretical", fails), ScriptedAgent("mathematical", fails)]
        orch = _orchestrator(store, test_settings, agents)

        result = _run(_process(store, orch, _job(TWO_CHUNKS)))

        assert result.status == JobStatus.FAILED
        assert result.error == "All 4 agent calls failed: broken chunk 0"
        assert len(result.agent_results) == 4
        assert _run(store.get_status("job-1")) == JobStatus.FAILED

    def test_empty_document_fails_job(self, store, test_settings):
        job = Job(
            id="job-1", document_content="", file_name="empty.txt", file_type="txt",
        )
        orch = _orchestrator(store, test_settings, [ScriptedAgent("theoretical")])

        result = _run(_process(store, orch, job))

        assert result.status == JobStatus.FAILED
        assert "no valid chunks" in result.error
        assert _run(store.get_status("job-1")) == JobStatus.FAILED

    def test_invalid_base64_fails_job(self, store, test_settings):
        job = Job(
            id="job-1", document_content="***not base64***", content_encoding="base64",
            file_name="draft.txt", file_type="txt",
        )
        orch = _orchestrator(store, test_settings, [ScriptedAgent("theoretical")])

        result = _run(_process(store, orch, job))

        assert result.status == JobStatus.FAILED
        assert "invalid base64" in result.error

    def test_no_agents_fails_job(self, store, test_settings):
        orch = _orchestrator(store, test_settings, [])
        result = _run(_process(store, orch, _job(TWO_CHUNKS)))
        assert result.status == JobStatus.FAILED
        assert "No analysis agents" in result.error
