"""
Image Trust Webhook - Images Module

This module parses container image references and extracts registry
credentials from image pull secrets.
"""

from .reference import ImageReference, canonical_image, is_valid_digest, DEFAULT_REGISTRY
from .pull_secret import ImagePullSecret

__all__ = ['ImageReference', 'canonical_image', 'is_valid_digest', 'DEFAULT_REGISTRY', 'ImagePullSecret']
