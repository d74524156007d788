"""Veo proxy: authenticating reverse proxy for Vertex AI predict."""
