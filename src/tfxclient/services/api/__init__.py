"""Resilient access to the mobile API."""

from .client import ApiClient, derive_api_base, rate_limit_delay_ms
from .errors import ApiError, SessionExpiredError, TransportError
from .renewal import SessionRenewalCoordinator, SingleFlight
from .request import LogicalRequest

__all__ = [
    "ApiClient",
    "ApiError",
    "LogicalRequest",
    "SessionExpiredError",
    "SessionRenewalCoordinator",
    "SingleFlight",
    "TransportError",
    "derive_api_base",
    "rate_limit_delay_ms",
]
