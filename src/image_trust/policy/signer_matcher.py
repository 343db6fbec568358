"""
Signer Policy Matcher Module

Decides whether a trust summary was produced by a signer that the
namespace's signer policy authorizes.
"""

import logging
from typing import Iterable, Optional, Set

from ..cluster.accessor import ClusterAccessor, SIGNER_KEY
from ..notary.summary import TrustSummary
from .models import SignerPolicy, SignerKey

logger = logging.getLogger(__name__)


class SignerPolicyMatcher:
    """Matches trust summaries against SignerPolicy and SignerKey records."""

    def __init__(self, accessor: ClusterAccessor):
        self.accessor = accessor

    def matches(self,
                summary: Optional[TrustSummary],
                policies: Iterable[SignerPolicy],
                namespace: str) -> bool:
        """
        Check a trust summary against the signer policies of a namespace.

        Without a signer policy for the namespace any non-empty summary is
        accepted. With one, a key of the first signed-tag row (administrative
        keys plus the keys of the delegated roles that signed it) must belong
        to one of the policy's signers. Signer keys are looked up fresh on
        every call.

        Args:
            summary: Trust summary of the image's tag
            policies: Signer policies to consider
            namespace: Namespace of the pod

        Returns:
            True if the summary is acceptable
        """
        if summary is None or summary.is_empty:
            return False

        scoped = [policy for policy in policies if policy.namespace == namespace]
        if not scoped:
            return True

        candidate_keys = self._candidate_keys(summary)
        for policy in scoped:
            for signer_name in policy.signers:
                signer_key = self.get_signer_key(signer_name)
                if signer_key is None:
                    logger.warning("Signer %s named by policy %s/%s has no SignerKey",
                                   signer_name, policy.namespace, policy.name)
                    continue
                if candidate_keys.intersection(signer_key.target_key_ids):
                    logger.debug("Signer %s authorizes %s", signer_name, summary.repository_name)
                    return True

        return False

    def get_signer_key(self, signer_name: str) -> Optional[SignerKey]:
        """Look up the keys of a signer. Returns None if the signer is unknown."""
        resource = self.accessor.get(SIGNER_KEY, signer_name)
        if resource is None:
            return None
        return SignerKey.from_resource(resource)

    @staticmethod
    def _candidate_keys(summary: TrustSummary) -> Set[str]:
        row = summary.signed_tags[0]
        keys = set(summary.administrative_key_ids())
        keys.update(summary.signer_key_ids(row.signers))
        return keys
