"""
Kubernetes Accessor Module

ClusterAccessor backed by the Kubernetes API server through the official
client. In-cluster credentials are loaded with token refresh enabled, so
rotated service-account tokens are picked up without a restart.
"""

import logging
from typing import Dict, List, Any, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client import ApiException
from kubernetes.config import ConfigException

from .accessor import (ClusterAccessor, SECRET, CONFIG_MAP, REGISTRY_SECURITY_POLICY,
                       SIGNER_POLICY, SIGNER_KEY)
from .errors import ClusterLookupError

logger = logging.getLogger(__name__)

DEFAULT_POLICY_API_GROUP = "tmax.io/v1"

# kind -> (read, list in namespace, list in all namespaces)
CORE_RESOURCES = {
    SECRET: ("read_namespaced_secret", "list_namespaced_secret", "list_secret_for_all_namespaces"),
    CONFIG_MAP: ("read_namespaced_config_map", "list_namespaced_config_map",
                 "list_config_map_for_all_namespaces"),
}

# kind -> (plural, namespaced)
CUSTOM_RESOURCES = {
    REGISTRY_SECURITY_POLICY: ("registrysecuritypolicies", True),
    SIGNER_POLICY: ("signerpolicies", True),
    SIGNER_KEY: ("signerkeys", False),
}


class KubernetesClusterAccessor(ClusterAccessor):
    """Reads resources from the Kubernetes API server."""

    def __init__(self,
                 core_api: Optional[client.CoreV1Api] = None,
                 custom_api: Optional[client.CustomObjectsApi] = None,
                 policy_api_group: str = DEFAULT_POLICY_API_GROUP,
                 timeout: float = 10):
        """
        Initialize the accessor.

        Args:
            core_api: Client for secrets and config maps
            custom_api: Client for the policy custom resources
            policy_api_group: ``group/version`` of the policy custom resources
            timeout: Per-request timeout in seconds
        """
        self.core_api = core_api or client.CoreV1Api()
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.group, _, self.version = policy_api_group.partition('/')
        if not self.group or not self.version:
            raise ValueError(f"Policy API group must be group/version, got '{policy_api_group}'")
        self.timeout = timeout
        self._serializer = client.ApiClient()

    @classmethod
    def in_cluster(cls, policy_api_group: str = DEFAULT_POLICY_API_GROUP,
                   timeout: float = 10) -> 'KubernetesClusterAccessor':
        """Build an accessor from the in-cluster service-account environment."""
        try:
            config.load_incluster_config(try_refresh_token=True)
        except ConfigException as e:
            raise ClusterLookupError(f"Unable to load in-cluster configuration: {e}")

        logger.info("Using in-cluster Kubernetes configuration")
        return cls(client.CoreV1Api(), client.CustomObjectsApi(),
                   policy_api_group=policy_api_group, timeout=timeout)

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        try:
            if kind in CORE_RESOURCES:
                if not namespace:
                    raise ClusterLookupError(f"{kind} lookups need a namespace", kind=kind, name=name)
                read = getattr(self.core_api, CORE_RESOURCES[kind][0])
                return self._to_dict(read(name, namespace, _request_timeout=self.timeout), kind)

            plural, namespaced = self._custom(kind)
            if namespaced and namespace:
                return self.custom_api.get_namespaced_custom_object(
                    self.group, self.version, namespace, plural, name, _request_timeout=self.timeout)
            return self.custom_api.get_cluster_custom_object(
                self.group, self.version, plural, name, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._lookup_error(e, kind, name)
        except urllib3.exceptions.HTTPError as e:
            raise self._lookup_error(e, kind, name)

    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            if kind in CORE_RESOURCES:
                _, list_namespaced, list_all = CORE_RESOURCES[kind]
                if namespace:
                    result = getattr(self.core_api, list_namespaced)(namespace, _request_timeout=self.timeout)
                else:
                    result = getattr(self.core_api, list_all)(_request_timeout=self.timeout)
                items = [self._to_dict(item, kind) for item in result.items or []]
            else:
                plural, namespaced = self._custom(kind)
                if namespaced and namespace:
                    result = self.custom_api.list_namespaced_custom_object(
                        self.group, self.version, namespace, plural, _request_timeout=self.timeout)
                else:
                    result = self.custom_api.list_cluster_custom_object(
                        self.group, self.version, plural, _request_timeout=self.timeout)
                items = result.get('items') or []
        except ApiException as e:
            if e.status == 404:
                return []
            raise self._lookup_error(e, kind)
        except urllib3.exceptions.HTTPError as e:
            raise self._lookup_error(e, kind)

        # list responses omit kind on the items
        for item in items:
            item.setdefault('kind', kind)
        return items

    def _custom(self, kind: str):
        if kind not in CUSTOM_RESOURCES:
            raise ClusterLookupError(f"Unsupported resource kind: {kind}", kind=kind)
        return CUSTOM_RESOURCES[kind]

    def _to_dict(self, obj: Any, kind: str) -> Dict[str, Any]:
        body = self._serializer.sanitize_for_serialization(obj)
        body.setdefault('kind', kind)
        return body

    @staticmethod
    def _lookup_error(error: Exception, kind: str, name: str = "") -> ClusterLookupError:
        logger.error("Cluster request for %s %s failed: %s", kind, name, error)
        return ClusterLookupError(f"Cluster request for {kind} {name} failed: {error}", kind=kind, name=name)
