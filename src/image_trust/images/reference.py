"""
Image Reference Module

Parses and serializes container image references of the form
``registry/name:tag@sha256:digest``.
"""

import re
from typing import Any, Dict

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
DOCKER_HUB_SERVER = "https://registry-1.docker.io"

# hosts that all mean Docker Hub
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io", "registry.hub.docker.com")

_DIGEST_PATTERN = re.compile(r'^[0-9a-f]{64}$')


def _looks_like_host(segment: str) -> bool:
    """
    A first path segment is a registry host if it has a domain or port.

    A single-label host such as ``registry/app`` is read as a Docker Hub
    repository, as Docker does, so it does not survive a round trip.
    """
    return '.' in segment or ':' in segment or segment == 'localhost'


def is_valid_digest(digest: str) -> bool:
    """Check that a digest is a lowercase hex SHA-256 string."""
    return bool(_DIGEST_PATTERN.match(digest or ''))


class ImageReference:
    """A parsed container image reference."""

    def __init__(self,
                 host: str = DEFAULT_REGISTRY,
                 name: str = "",
                 tag: str = DEFAULT_TAG,
                 digest: str = ""):
        self.host = host
        self.name = name
        self.tag = tag
        self.digest = digest

    @classmethod
    def parse(cls, image: str) -> 'ImageReference':
        """
        Parse an image string into its components.

        Any string is accepted; the worst case is a reference with an empty
        repository name. Docker Hub aliases fold into ``docker.io`` and
        sha256 digests are lowercased, so ``parse(str(ref)) == ref`` holds
        for every parsed reference except those whose host is a bare
        single label.

        Args:
            image: Image reference as found in a container spec

        Returns:
            ImageReference with defaults applied for missing host and tag
        """
        remainder = image.strip()

        digest = ""
        if '@' in remainder:
            remainder, digest = remainder.split('@', 1)
            if digest.lower().startswith('sha256:'):
                digest = digest[len('sha256:'):].lower()

        host = DEFAULT_REGISTRY
        if '/' in remainder:
            first, rest = remainder.split('/', 1)
            if _looks_like_host(first):
                host = first
                if host.lower() in DOCKER_HUB_ALIASES:
                    host = DEFAULT_REGISTRY
                remainder = rest

        name = remainder
        tag = DEFAULT_TAG
        last_segment = name.rsplit('/', 1)[-1]
        if ':' in last_segment:
            name, tag = name.rsplit(':', 1)
            if not tag:
                tag = DEFAULT_TAG

        return cls(host=host, name=name, tag=tag, digest=digest)

    @property
    def name_with_host(self) -> str:
        """Globally unique repository name used by the notary server."""
        name = self.name
        if self.host == DEFAULT_REGISTRY and '/' not in name:
            name = f"library/{name}"
        return f"{self.host}/{name}"

    @property
    def registry_server(self) -> str:
        """Registry server URL as it appears in pull-secret auth entries."""
        if self.host == DEFAULT_REGISTRY:
            return DOCKER_HUB_SERVER
        return f"https://{self.host}"

    def with_digest(self, digest: str) -> 'ImageReference':
        """Return a copy of this reference pinned to the given digest."""
        return ImageReference(host=self.host, name=self.name, tag=self.tag, digest=digest)

    def to_string(self) -> str:
        """Serialize to the canonical ``host/name:tag[@sha256:digest]`` form."""
        value = f"{self.host}/{self.name}:{self.tag}"
        if self.digest:
            value = f"{value}@sha256:{self.digest}"
        return value

    def to_dict(self) -> Dict[str, Any]:
        """Convert image reference to dictionary format."""
        return {
            'host': self.host,
            'name': self.name,
            'tag': self.tag,
            'digest': self.digest
        }

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"ImageReference({self.to_string()!r})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ImageReference):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash((self.host, self.name, self.tag, self.digest))


def canonical_image(image: str) -> str:
    """Canonical ``host/name:tag`` form of an image string, without digest."""
    ref = ImageReference.parse(image)
    return f"{ref.host}/{ref.name}:{ref.tag}"
