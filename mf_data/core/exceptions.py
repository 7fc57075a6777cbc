"""Exception types raised by the NAV data services."""
from typing import Optional


class MfDataError(Exception):
    """Base error for this package."""


class ProviderError(MfDataError):
    """The NAV provider returned something we could not use."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProviderUnavailableError(ProviderError):
    """Transport failure or 5xx from the provider. Safe to retry."""


class ProviderTimeoutError(ProviderUnavailableError):
    """The provider did not answer within the configured timeout."""


class ProviderNotFoundError(ProviderError):
    """Unknown scheme code, or the provider returned no data for it."""


class InvalidNavDateError(MfDataError, ValueError):
    """A date string matched none of the accepted NAV date formats."""
