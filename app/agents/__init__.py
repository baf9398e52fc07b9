# =============================================================================
# Agents Package — Review Agents and Orchestration
# =============================================================================
#   - base.py: Agent protocol, ReviewAgent base, JSON response parsing
#   - reviewers.py: Theoretical, Mathematical and Epistemic reviewers
#   - registry.py: Ordered agent registry built from settings
#   - orchestrator.py: LangGraph pipeline (chunk → analyse → aggregate)
#
# Every (chunk, agent) call goes through the shared RateLimiter; a failed
# call becomes an AgentFailure marker instead of failing the job.
# =============================================================================
