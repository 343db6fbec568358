"""
Image Trust Webhook - Cluster Module

This module provides read access to the cluster configuration store:
secrets, config maps and the policy custom resources.
"""

from .accessor import (ClusterAccessor, StaticClusterAccessor, SECRET, CONFIG_MAP,
                       REGISTRY_SECURITY_POLICY, SIGNER_POLICY, SIGNER_KEY)
from .errors import ClusterLookupError
from .kubernetes import KubernetesClusterAccessor

__all__ = [
    'ClusterAccessor', 'StaticClusterAccessor', 'KubernetesClusterAccessor', 'ClusterLookupError',
    'SECRET', 'CONFIG_MAP', 'REGISTRY_SECURITY_POLICY', 'SIGNER_POLICY', 'SIGNER_KEY'
]
