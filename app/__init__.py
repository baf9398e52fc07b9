# =============================================================================
# Pre-Review Analysis Pipeline
# =============================================================================
# A queue-backed, multi-agent review system for research documents.
# A submitted document is split into token windows, every window is reviewed
# by several independent LLM agents behind one rate-limited gate, and the
# outcomes are aggregated into a single report that clients poll for.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI routes (submit, poll status, fetch report)
#   ├── agents/       → Review agents, registry, LangGraph orchestrator
#   ├── models/       → Pydantic V2 domain models and API schemas
#   ├── services/     → Chunker, rate limiter, Redis job store, LLM
#   │                    providers, knowledge search, submission
#   └── workers/      → Queue consumer loop (one job at a time)
# =============================================================================
