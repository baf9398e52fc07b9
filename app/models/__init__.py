# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
#   - domain.py: Job, JobStatus, AgentResult/AgentFailure, AnalysisResult
#     (what the job store persists)
#   - requests.py / responses.py: HTTP contract of the API
#
# Domain models and API schemas are kept apart so the stored report can
# evolve without changing what clients submit.
# =============================================================================
