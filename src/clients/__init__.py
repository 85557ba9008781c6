"""
Betfair REST API clients.

- BetfairClient: identity login, market catalogue, order placement/edits
- BaseClient: HTTP client base class with retry and circuit breaker
"""

from src.clients.base import BaseClient, CircuitOpenError, GatewayError
from src.clients.betfair import BetfairClient

__all__ = [
    "BaseClient",
    "BetfairClient",
    "CircuitOpenError",
    "GatewayError",
]
