"""
Adapters package for the Veo proxy.

Contains the HTTP client wrapper for the Vertex AI predict endpoint. The
adapter encapsulates:

- Endpoint construction from static configuration
- Per-attempt timeout and the bounded retry policy
- Classification of upstream outcomes (response vs. transport failure)

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .vertex_client import VertexCallResult, VertexClient, VertexFailure, VertexOutcome

__all__ = [
    "VertexCallResult",
    "VertexClient",
    "VertexFailure",
    "VertexOutcome",
]
