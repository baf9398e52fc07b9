# =============================================================================
# Services Package — Pipeline Building Blocks
# =============================================================================
#   - chunker.py: Token-window chunking with tiktoken
#   - rate_limiter.py: Serialising gate with 429 backoff for the LLM
#   - job_store.py: Redis queue + status/result keys
#   - submission.py: Validate and enqueue submitted documents
#   - llm.py: Completion service over Anthropic or OpenAI-compatible APIs
#   - embedder.py: Query embeddings for the knowledge store
#   - knowledge.py: Chroma-backed knowledge search for agent context
# =============================================================================
