"""Exception types raised by the farm synchronisation pipeline."""

from __future__ import annotations


class FarmSyncError(Exception):
    """Base class for pipeline errors."""


class CatalogFetchError(FarmSyncError):
    """Raised when the remote farm catalog cannot be fetched or parsed."""


class AccountDecodeError(FarmSyncError):
    """Raised when an on-chain account does not match the expected layout."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"{address}: {reason}")
        self.address = address
        self.reason = reason


class FarmHydrationError(FarmSyncError):
    """Raised when a parsed farm cannot be turned into a hydrated view."""

    def __init__(self, farm_id: str, reason: str) -> None:
        super().__init__(f"{farm_id}: {reason}")
        self.farm_id = farm_id
        self.reason = reason


__all__ = [
    "AccountDecodeError",
    "CatalogFetchError",
    "FarmHydrationError",
    "FarmSyncError",
]
