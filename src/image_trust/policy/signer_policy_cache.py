"""
Signer Policy Cache Module

Snapshot of SignerPolicy records by namespace.
"""

import logging
from types import MappingProxyType
from typing import Dict, List, Tuple

from ..cluster.accessor import SIGNER_POLICY
from .models import SignerPolicy
from .snapshot import SnapshotCache

logger = logging.getLogger(__name__)


class SignerPolicyCache(SnapshotCache):
    """Signer policies indexed by the namespace they govern."""

    def _build_snapshot(self):
        index: Dict[str, List[SignerPolicy]] = {}
        for resource in self.accessor.list(SIGNER_POLICY):
            policy = SignerPolicy.from_resource(resource)
            index.setdefault(policy.namespace, []).append(policy)
        logger.info("Loaded signer policies for %d namespaces", len(index))
        return MappingProxyType({ns: tuple(policies) for ns, policies in index.items()})

    def policies_for(self, namespace: str) -> Tuple[SignerPolicy, ...]:
        return self.snapshot.get(namespace, ())
