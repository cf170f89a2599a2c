from __future__ import annotations

from typing import Optional


class ExpressMergeError(Exception):
    """Base class for every error raised by this package."""


class AuthenticationError(ExpressMergeError):
    """Inbound webhook signature missing or wrong."""


class MalformedInputError(ExpressMergeError):
    """Inbound webhook body is not a JSON object."""


class UpstreamError(ExpressMergeError):
    """
    Shopify answered with a non-success status or a top-level GraphQL error.
    Carries the status code and the first part of the body for the logs.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body[:500]


class TagStateError(ExpressMergeError):
    """A tag set breaks one of the order-state exclusion rules."""
