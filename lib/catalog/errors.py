"""Failure taxonomy for the catalog pipeline."""
from __future__ import annotations


class CatalogError(Exception):
    """Base class for every error raised by lib.catalog."""


class AuthFailure(CatalogError):
    """Credential issuance failed (bad status, malformed body, or transport error)."""


class NetworkFailure(CatalogError):
    """The transport kept failing until the retry budget ran out."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class RateLimited(CatalogError):
    """A 429 from the remote. Only ever raised and caught inside ResilientFetch."""

    def __init__(self, response, wait_s: float):
        super().__init__(f"Rate limited; retry in {wait_s:.2f}s")
        self.response = response
        self.wait_s = wait_s


class UpstreamError(CatalogError):
    """The remote answered a primary read with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidPlaylistId(CatalogError, ValueError):
    """The given URL / URI / raw id does not name a playlist."""
