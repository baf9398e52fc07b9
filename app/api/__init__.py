# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - analysis.py: Submit a document, poll its status, fetch its report
#   - deps.py: Dependency providers (settings, job store)
#
# GET /health lives on the application itself (app/main.py).
# =============================================================================
