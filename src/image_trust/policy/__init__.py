"""
Image Trust Webhook - Policy Module

This module holds the cluster-configured policy: registry security
policies, whitelists and signer policies, cached as atomically refreshed
snapshots, plus the matcher that checks signers against signer policies.
"""

from .models import RegistrySecurityPolicy, SignerPolicy, SignerKey, WhiteList
from .registry_policy_cache import RegistryPolicyCache
from .signer_matcher import SignerPolicyMatcher
from .signer_policy_cache import SignerPolicyCache
from .whitelist import WhitelistCache

__all__ = [
    'RegistrySecurityPolicy', 'SignerPolicy', 'SignerKey', 'WhiteList',
    'RegistryPolicyCache', 'SignerPolicyCache', 'WhitelistCache', 'SignerPolicyMatcher'
]
