# =============================================================================
# Workers Package — Background Job Processing
# =============================================================================
#   - worker.py: AnalysisWorker loop and the `prereview-worker` entry point
#
# WHY A SEPARATE PROCESS?
# One job issues chunks × agents completion calls spaced seconds apart, so
# a job takes minutes. The API only enqueues; the worker drains the queue
# one job at a time and writes the report back to Redis for polling.
# =============================================================================
