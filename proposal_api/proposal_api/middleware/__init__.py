"""Middleware components for the ProposalHQ API."""

from __future__ import annotations

from proposal_api.middleware.auth import AuthenticationMiddleware
from proposal_api.middleware.logging import RequestLoggingMiddleware
from proposal_api.middleware.prometheus import PrometheusMiddleware

__all__ = [
    "AuthenticationMiddleware",
    "PrometheusMiddleware",
    "RequestLoggingMiddleware",
]
