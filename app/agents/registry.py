# =============================================================================
# Agent Registry — Ordered Set of Reviewers
# =============================================================================
#
# The orchestrator dispatches every chunk to every registered agent, in
# registration order. That order is also the order of agent results
# within a chunk in the final report.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from app.agents.base import Agent
from app.agents.reviewers import DEFAULT_AGENT_CLASSES
from app.config import Settings
from app.services.llm import CompletionService

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Agents keyed by id, iterated in registration order."""

    def __init__(self, agents: Iterable[Agent] = ()) -> None:
        self._agents: dict[str, Agent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        if not agent.agent_id:
            raise ValueError(f"Agent {agent!r} has no agent_id")
        if agent.agent_id in self._agents:
            raise ValueError(f"Agent '{agent.agent_id}' is already registered")
        self._agents[agent.agent_id] = agent

    def get(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    @property
    def ids(self) -> list[str]:
        return list(self._agents)

    def __iter__(self) -> Iterator[Agent]:
        return iter(list(self._agents.values()))

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents


def default_registry(llm: CompletionService, settings: Settings) -> AgentRegistry:
    """
    Build the reviewers listed in settings.enabled_agents.

    Order follows settings.enabled_agents; an empty list enables every
    known agent in their default order.

    Raises:
        ValueError: An enabled id does not name a known agent.
    """
    known = {cls.agent_id: cls for cls in DEFAULT_AGENT_CLASSES}
    enabled = settings.enabled_agents or list(known)

    unknown = [agent_id for agent_id in enabled if agent_id not in known]
    if unknown:
        raise ValueError(
            f"Unknown agents in ENABLED_AGENTS: {', '.join(unknown)}. "
            f"Known: {', '.join(known)}"
        )

    registry = AgentRegistry(
        known[agent_id](
            llm,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
        for agent_id in enabled
    )
    logger.info("Registered agents: %s", ", ".join(registry.ids))
    return registry
