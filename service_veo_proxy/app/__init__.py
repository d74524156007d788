"""
Veo proxy service package.

The proxy fronts a single Vertex AI predict endpoint, enforcing:
- Local API key authentication before any upstream work
- Per-client fixed-window rate limiting
- Per-attempt timeouts and one jittered retry on the upstream leg

Structure:
- app.main: FastAPI app, the /veo/generate handler, and the CLI entry point.
- app.adapters: HTTP client for Vertex AI.
- app.ratelimit: Fixed-window limiters and middleware.
"""
