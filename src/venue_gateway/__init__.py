"""
Venue Gateway - authenticated, rate-governed access to a trading venue.

This package provides a rate-limited REST gateway with HMAC request signing
and a ticker snapshot aggregator that turns the venue's incremental
websocket feed into one complete point-in-time view.
"""

__version__ = "1.0.0"
__author__ = "Venue Gateway Team"

from .exceptions import GatewayError, ConfigurationError, SigningError, TransportError
from .clients.models import AggregationResult, Ticker, MarketInfo
from .clients.rest_gateway import VenueGateway
from .clients.snapshot import TickerSnapshotAggregator
from .utils.rate_limiter import RateLimiter

__all__ = [
    "GatewayError",
    "ConfigurationError",
    "SigningError",
    "TransportError",
    "AggregationResult",
    "Ticker",
    "MarketInfo",
    "VenueGateway",
    "TickerSnapshotAggregator",
    "RateLimiter",
]
