"""
Gateway HTTP Models

Response models for the non-protocol HTTP endpoints.
"""
