"""
Registry Policy Cache Module

Index of RegistrySecurityPolicy records by registry host and namespace.
"""

import logging
from types import MappingProxyType
from typing import Dict, Optional, Tuple

from ..cluster.accessor import REGISTRY_SECURITY_POLICY
from ..images.reference import DEFAULT_REGISTRY, DOCKER_HUB_ALIASES
from .models import RegistrySecurityPolicy, normalize_registry
from .snapshot import SnapshotCache

logger = logging.getLogger(__name__)


def canonical_host(host: str) -> str:
    host = normalize_registry(host)
    if host in DOCKER_HUB_ALIASES:
        return DEFAULT_REGISTRY
    return host


class RegistryPolicyCache(SnapshotCache):
    """Snapshot of registry security policies, keyed by host then namespace."""

    def _build_snapshot(self):
        index: Dict[str, Dict[Optional[str], RegistrySecurityPolicy]] = {}
        resources = sorted(self.accessor.list(REGISTRY_SECURITY_POLICY),
                           key=lambda r: ((r.get('metadata') or {}).get('namespace') or '',
                                          (r.get('metadata') or {}).get('name') or ''))
        count = 0
        for resource in resources:
            for policy in RegistrySecurityPolicy.from_resource(resource):
                by_namespace = index.setdefault(canonical_host(policy.registry), {})
                if policy.namespace in by_namespace:
                    logger.warning("Duplicate security policy for registry %s in namespace %s; keeping the first",
                                   policy.registry, policy.namespace or '<cluster>')
                    continue
                by_namespace[policy.namespace] = policy
                count += 1

        logger.info("Loaded %d registry security policies for %d registries", count, len(index))
        return MappingProxyType({host: MappingProxyType(by_ns) for host, by_ns in index.items()})

    def match(self, host: str, namespace: str) -> Tuple[bool, Optional[RegistrySecurityPolicy]]:
        """
        Find the security policy that applies to a registry in a namespace.

        A policy scoped to the namespace wins over a cluster-wide one.

        Args:
            host: Registry host of the image
            namespace: Namespace of the pod

        Returns:
            Tuple of (found, policy)
        """
        by_namespace = self.snapshot.get(canonical_host(host))
        if not by_namespace:
            return False, None
        policy = by_namespace.get(namespace) or by_namespace.get(None)
        if policy is None:
            return False, None
        return True, policy
