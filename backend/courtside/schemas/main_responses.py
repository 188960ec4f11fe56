# backend/courtside/schemas/main_responses.py
"""Responses for the unversioned infrastructure endpoints."""

from ._strict_base import StrictModel


class HealthResponse(StrictModel):
    """Response for health check endpoint."""

    status: str
    service: str
    version: str
    environment: str
    timestamp: str
