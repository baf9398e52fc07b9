# =============================================================================
# Shared Test Fixtures — In-Memory Fakes
# =============================================================================
#
# Lightweight stand-ins for the pipeline's external collaborators so tests
# run without Redis, API keys, tokenizer downloads or real sleeps:
#
#   FakeRedis    — the handful of redis.asyncio commands JobStore uses
#   CharEncoder  — one token per character (easy offset arithmetic)
#   FakeClock    — monotonic clock + sleep that only advance virtual time
#   ScriptedAgent — Agent whose answers/errors are fixed per chunk
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import Settings
from app.models.domain import AgentResult
from app.services.chunker import Chunk
from app.services.job_store import JobStore
from app.services.knowledge import KnowledgeSnippet


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class FakePipeline:
    """Buffers commands and applies them all at execute(), or none."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc) -> bool:
        self._ops.clear()
        return False

    def rpush(self, key, *values):
        self._ops.append(("rpush", key, values))
        return self

    def set(self, key, value, ex=None):
        self._ops.append(("set", key, value, ex))
        return self

    async def execute(self):
        self._redis.check()
        results = []
        for op in self._ops:
            if op[0] == "rpush":
                results.append(self._redis.apply_rpush(op[1], op[2]))
            else:
                results.append(self._redis.apply_set(op[1], op[2], op[3]))
        self._ops.clear()
        return results


class FakeRedis:
    """In-memory subset of redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.writes: list[str] = []  # keys in SET order
        self.down = False
        self.closed = False

    def check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    def apply_rpush(self, key, values) -> int:
        self.lists[key].extend(values)
        return len(self.lists[key])

    def apply_set(self, key, value, ex) -> bool:
        self.values[key] = value
        if ex:
            self.ttls[key] = ex
        else:
            self.ttls.pop(key, None)
        self.writes.append(key)
        return True

    async def rpush(self, key, *values):
        self.check()
        return self.apply_rpush(key, values)

    async def lpop(self, key):
        self.check()
        items = self.lists.get(key)
        return items.pop(0) if items else None

    async def llen(self, key):
        self.check()
        return len(self.lists.get(key, []))

    async def set(self, key, value, ex=None):
        self.check()
        return self.apply_set(key, value, ex)

    async def get(self, key):
        self.check()
        return self.values.get(key)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


# ---------------------------------------------------------------------------
# Tokenizer and time
# ---------------------------------------------------------------------------


class CharEncoder:
    """Tokenizer with one token per character."""

    def encode(self, text: str) -> list[int]:
        return [ord(c) for c in text]

    def decode(self, tokens: list[int]) -> str:
        return "".join(chr(t) for t in tokens)


class FakeClock:
    """Virtual monotonic clock; sleep() advances it instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Agents and knowledge
# ---------------------------------------------------------------------------


class ScriptedAgent:
    """
    Agent with canned behaviour.

    `script(chunk)` returns a dict of AgentResult fields, or raises.
    Every call is recorded as (agent_id, chunk_index, context).
    """

    def __init__(
        self,
        agent_id: str,
        script: Callable[[Chunk], dict] | None = None,
        calls: list | None = None,
    ) -> None:
        self.agent_id = agent_id
        self._script = script or (lambda chunk: {})
        self.calls = calls if calls is not None else []

    async def analyze(self, chunk: Chunk, context: list[KnowledgeSnippet]) -> AgentResult:
        self.calls.append((self.agent_id, chunk.sequence_index, context))
        fields = {
            "confidence": 0.8,
            "summary": f"{self.agent_id} on chunk {chunk.sequence_index}",
            **self._script(chunk),
        }
        return AgentResult(
            agent_id=self.agent_id,
            chunk_index=chunk.sequence_index,
            **fields,
        )


class StaticKnowledge:
    """KnowledgeSearch returning fixed snippets and recording queries."""

    def __init__(self, snippets: list[KnowledgeSnippet] | None = None) -> None:
        self.snippets = snippets or []
        self.queries: list[tuple[str, int]] = []

    async def search(self, query: str, limit: int = 5) -> list[KnowledgeSnippet]:
        self.queries.append((query, limit))
        return self.snippets[:limit]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def store(fake_redis) -> JobStore:
    return JobStore(fake_redis, key_prefix="analysis", result_ttl_seconds=3600)


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        chunk_max_tokens=10,
        chunk_overlap=2,
        knowledge_query_chars=5,
        knowledge_top_k=2,
        max_file_size_bytes=1000,
        supported_file_types=["txt", "md", "tex"],
    )
