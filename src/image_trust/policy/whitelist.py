"""
Whitelist Cache Module

Images and namespaces that are exempt from signature validation.
"""

import logging
from typing import Iterable, NamedTuple, FrozenSet, Tuple

from ..cluster.accessor import ClusterAccessor, CONFIG_MAP
from ..images.reference import canonical_image
from .models import WhiteList
from .snapshot import SnapshotCache

logger = logging.getLogger(__name__)

DEFAULT_WHITELIST_NAMESPACE = "image-trust-system"
DEFAULT_WHITELIST_CONFIG_MAP = "image-trust-whitelist"


class WhiteListSnapshot(NamedTuple):
    images: Tuple[str, ...]
    namespaces: FrozenSet[str]


class WhitelistCache(SnapshotCache):
    """Snapshot of the whitelist config map merged with static entries."""

    def __init__(self,
                 accessor: ClusterAccessor,
                 namespace: str = DEFAULT_WHITELIST_NAMESPACE,
                 config_map_name: str = DEFAULT_WHITELIST_CONFIG_MAP,
                 extra_images: Iterable[str] = (),
                 extra_namespaces: Iterable[str] = ()):
        """
        Args:
            accessor: Cluster accessor to read the config map with
            namespace: Namespace of the whitelist config map
            config_map_name: Name of the whitelist config map
            extra_images: Image substrings always whitelisted
            extra_namespaces: Namespaces always whitelisted
        """
        self.namespace = namespace
        self.config_map_name = config_map_name
        self.extra_images = tuple(extra_images)
        self.extra_namespaces = tuple(extra_namespaces)
        super().__init__(accessor)

    def _build_snapshot(self) -> WhiteListSnapshot:
        config_map = self.accessor.get(CONFIG_MAP, self.config_map_name, self.namespace)
        if config_map is None:
            logger.warning("Whitelist config map %s/%s not found", self.namespace, self.config_map_name)
        whitelist = WhiteList.from_config_map(config_map)

        images = tuple(dict.fromkeys(list(self.extra_images) + whitelist.by_images))
        namespaces = frozenset(list(self.extra_namespaces) + whitelist.by_namespaces)
        logger.info("Whitelist holds %d images and %d namespaces", len(images), len(namespaces))
        return WhiteListSnapshot(images, namespaces)

    def is_image_whitelisted(self, image: str) -> bool:
        """An image is whitelisted if any entry is a substring of its ``host/name:tag`` form."""
        canonical = canonical_image(image)
        return any(entry in canonical for entry in self.snapshot.images)

    def is_namespace_whitelisted(self, namespace: str) -> bool:
        """A namespace is whitelisted if it is listed exactly."""
        return namespace in self.snapshot.namespaces
