"""
Image Trust Webhook - Notary Module

This module implements a client for TUF-based notary trust servers: it
authenticates, downloads and verifies signed metadata, and reduces it to a
TrustSummary of released tags, signers and administrative keys.
"""

from .client import TrustClient, DEFAULT_NOTARY_SERVER
from .errors import TrustError, TrustRetrievalError, TrustMetadataError
from .summary import TrustSummary, SignedTag, TrustSigner, REPO_ADMIN_SIGNER

__all__ = [
    'TrustClient', 'DEFAULT_NOTARY_SERVER',
    'TrustError', 'TrustRetrievalError', 'TrustMetadataError',
    'TrustSummary', 'SignedTag', 'TrustSigner', 'REPO_ADMIN_SIGNER'
]
