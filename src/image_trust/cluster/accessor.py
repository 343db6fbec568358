"""
Cluster Accessor Module

Narrow read-only view of the cluster configuration store: get or list
resources of a kind. Policy, whitelist and credential lookups depend on this
interface only, never on a particular API client.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional

import yaml

from .errors import ClusterLookupError

logger = logging.getLogger(__name__)

SECRET = "Secret"
CONFIG_MAP = "ConfigMap"
REGISTRY_SECURITY_POLICY = "RegistrySecurityPolicy"
SIGNER_POLICY = "SignerPolicy"
SIGNER_KEY = "SignerKey"


class ClusterAccessor(ABC):
    """Abstract base class for cluster resource access."""

    @abstractmethod
    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Get one resource. Returns None if it does not exist."""
        pass

    @abstractmethod
    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        """List resources of a kind, in one namespace or in all of them."""
        pass


class StaticClusterAccessor(ClusterAccessor):
    """In-memory resource store, optionally loaded from a YAML file."""

    def __init__(self, resources: Optional[List[Dict[str, Any]]] = None):
        self._resources: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        for resource in resources or []:
            self.add(resource)

    @classmethod
    def from_file(cls, path: str) -> 'StaticClusterAccessor':
        """
        Load resources from a multi-document YAML file.

        Documents of kind ``List`` contribute their ``items``.

        Args:
            path: Path to the YAML file

        Returns:
            StaticClusterAccessor holding the resources
        """
        try:
            with open(path, 'r') as f:
                documents = list(yaml.safe_load_all(f))
        except (OSError, yaml.YAMLError) as e:
            raise ClusterLookupError(f"Unable to load cluster state from {path}: {e}")

        resources = []
        for document in documents:
            if not document:
                continue
            if document.get('kind') == 'List':
                resources.extend(document.get('items') or [])
            else:
                resources.append(document)

        logger.info("Loaded %d resources from %s", len(resources), path)
        return cls(resources)

    def add(self, resource: Dict[str, Any]):
        """Add or replace a resource."""
        if not isinstance(resource, dict) or not resource.get('kind'):
            raise ValueError("Resource must be a mapping with a kind")
        metadata = resource.get('metadata') or {}
        if not metadata.get('name'):
            raise ValueError(f"{resource['kind']} resource has no metadata.name")

        with self._lock:
            self._resources = [r for r in self._resources if not self._same(r, resource)]
            self._resources.append(copy.deepcopy(resource))

    def remove(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        """Remove a resource. Returns True if something was removed."""
        with self._lock:
            before = len(self._resources)
            self._resources = [r for r in self._resources
                               if not self._matches(r, kind, namespace, name)]
            return len(self._resources) != before

    def get(self, kind: str, name: str, namespace: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with self._lock:
            for resource in self._resources:
                if self._matches(resource, kind, namespace, name):
                    return copy.deepcopy(resource)
        return None

    def list(self, kind: str, namespace: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._resources if self._matches(r, kind, namespace)]

    @staticmethod
    def _matches(resource: Dict[str, Any], kind: str, namespace: Optional[str], name: Optional[str] = None) -> bool:
        metadata = resource.get('metadata') or {}
        if resource.get('kind') != kind:
            return False
        if namespace is not None and metadata.get('namespace') != namespace:
            return False
        if name is not None and metadata.get('name') != name:
            return False
        return True

    @staticmethod
    def _same(a: Dict[str, Any], b: Dict[str, Any]) -> bool:
        meta_a = a.get('metadata') or {}
        meta_b = b.get('metadata') or {}
        return (a.get('kind') == b.get('kind')
                and meta_a.get('name') == meta_b.get('name')
                and meta_a.get('namespace') == meta_b.get('namespace'))
