"""
Notary Errors Module

Exception types raised while retrieving and reading trust metadata.
"""


class TrustError(Exception):
    """Base class for trust retrieval failures."""


class TrustRetrievalError(TrustError):
    """The notary server could not be reached, authenticated against or answered with an error."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class TrustMetadataError(TrustError):
    """Trust metadata is malformed, expired or fails signature verification."""
