"""
Validation Engine Module

Decides whether every container image of a pod is trusted under the
registry security policies and, if so, pins each verified image to its
signed digest.
"""

import logging
from typing import Dict, List, Any, Optional, Tuple

from ..cluster.accessor import ClusterAccessor, SECRET
from ..images.pull_secret import ImagePullSecret
from ..images.reference import ImageReference, is_valid_digest
from ..notary.client import TrustClient
from ..policy.registry_policy_cache import RegistryPolicyCache
from ..policy.signer_matcher import SignerPolicyMatcher
from ..policy.signer_policy_cache import SignerPolicyCache
from ..policy.whitelist import WhitelistCache

logger = logging.getLogger(__name__)

CONTAINER_FIELDS = ("initContainers", "containers")


def not_signed_reason(image: str) -> str:
    return f"Image '{image}' is not signed"


def missing_policy_reason(image: str) -> str:
    return (f"Image '{image}' does not meet registry security policy. "
            f"Please check the RegistrySecurityPolicy")


def digest_mismatch_reason(image: str) -> str:
    return f"Image '{image}' digest is different from the signed digest"


def invalid_digest_reason(image: str) -> str:
    return f"Image '{image}' digest is not a valid sha256 digest"


def ambiguous_digest_reason(image: str, tag: str) -> str:
    return f"Image '{image}' has more than one signed digest for tag '{tag}'"


class ValidationEngine:
    """Validates pods if their images are signed."""

    def __init__(self,
                 accessor: ClusterAccessor,
                 trust_client: TrustClient,
                 registry_policy_cache: Optional[RegistryPolicyCache] = None,
                 whitelist_cache: Optional[WhitelistCache] = None,
                 signer_policy_cache: Optional[SignerPolicyCache] = None,
                 signer_matcher: Optional[SignerPolicyMatcher] = None):
        """
        Initialize the validation engine.

        Caches that are not passed in are built from the accessor, which
        reads the cluster state once at construction.

        Args:
            accessor: Cluster accessor for secrets and policy resources
            trust_client: Client for notary trust servers
            registry_policy_cache: Registry security policies
            whitelist_cache: Whitelisted images and namespaces
            signer_policy_cache: Signer policies by namespace
            signer_matcher: Matcher for signer policies
        """
        self.accessor = accessor
        self.trust_client = trust_client
        self.registry_policy_cache = registry_policy_cache or RegistryPolicyCache(accessor)
        self.whitelist_cache = whitelist_cache or WhitelistCache(accessor)
        self.signer_policy_cache = signer_policy_cache or SignerPolicyCache(accessor)
        self.signer_matcher = signer_matcher or SignerPolicyMatcher(accessor)

    @property
    def caches(self) -> List[Any]:
        return [self.registry_policy_cache, self.whitelist_cache, self.signer_policy_cache]

    def check_is_valid_and_add_digest(self, pod: Dict[str, Any]) -> Tuple[bool, str]:
        """
        Check the images of a pod's init containers and containers.

        Verified images are rewritten in place to ``host/name:tag@sha256:digest``.
        Checking stops at the first rejected container; containers after it
        are left untouched.

        Args:
            pod: Pod object as found in an admission request

        Returns:
            Tuple of (valid, reason); reason is "" when valid

        Raises:
            TrustError: If trust metadata could not be retrieved or read
            ClusterLookupError: If secrets or policy resources could not be read
        """
        metadata = pod.get('metadata') or {}
        namespace = metadata.get('namespace') or 'default'

        if self.whitelist_cache.is_namespace_whitelisted(namespace):
            logger.info("Namespace %s is whitelisted", namespace)
            return True, ""

        spec = pod.get('spec') or {}
        pull_secrets = [ref.get('name') for ref in spec.get('imagePullSecrets') or []
                        if isinstance(ref, dict) and ref.get('name')]

        for field in CONTAINER_FIELDS:
            is_valid, reason = self._add_digest_when_image_valid(spec.get(field) or [], namespace, pull_secrets)
            if not is_valid:
                logger.info("Rejected pod %s/%s: %s", namespace, metadata.get('name', ''), reason)
                return False, reason

        return True, ""

    def _add_digest_when_image_valid(self,
                                     containers: List[Dict[str, Any]],
                                     namespace: str,
                                     pull_secrets: List[str]) -> Tuple[bool, str]:
        for container in containers:
            image = container.get('image', '')

            if self.whitelist_cache.is_image_whitelisted(image):
                logger.debug("Image %s is whitelisted", image)
                continue

            ref = ImageReference.parse(image)
            if ref.digest and not is_valid_digest(ref.digest):
                return False, invalid_digest_reason(image)

            basic_auth = self.get_basic_auth_for_registry(ref, namespace, pull_secrets)

            found, policy = self.registry_policy_cache.match(ref.host, namespace)
            if not found:
                return False, missing_policy_reason(image)
            if not policy.notary or not policy.sign_check:
                continue

            summary = self.trust_client.fetch_signature(image, basic_auth, policy.notary)
            if summary is None:
                return False, not_signed_reason(image)

            # an unauthorized signer is reported like a missing signature
            if not self.signer_matcher.matches(summary, self.signer_policy_cache.policies_for(namespace), namespace):
                return False, not_signed_reason(image)

            digests = summary.digests_for_tag(ref.tag)
            if not digests:
                return False, not_signed_reason(image)
            if len(digests) > 1:
                return False, ambiguous_digest_reason(image, ref.tag)

            digest = digests[0]
            if ref.digest and ref.digest != digest:
                return False, digest_mismatch_reason(image)

            container['image'] = ref.with_digest(digest).to_string()
            logger.info("Image %s verified, pinned to %s", image, container['image'])

        return True, ""

    def get_basic_auth_for_registry(self, ref: ImageReference, namespace: str, pull_secrets: List[str]) -> str:
        """
        Find registry credentials among the pod's pull secrets.

        The first existing secret holding credentials for the registry wins.
        No credential is not an error: the image may be public.

        Returns:
            base64 ``user:password`` token, or ""
        """
        for name in pull_secrets:
            secret = self.accessor.get(SECRET, name, namespace)
            if secret is None:
                logger.debug("Pull secret %s/%s does not exist", namespace, name)
                continue
            basic_auth = ImagePullSecret.from_resource(secret).get_host_basic_auth(ref.registry_server)
            if basic_auth:
                return basic_auth

        return ""
