"""HTTP client for the recovery API."""

from .api import RecoveryApiClient

__all__ = ["RecoveryApiClient"]
