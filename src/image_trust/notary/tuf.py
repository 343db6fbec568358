"""
TUF Metadata Module

Parses the roles that a notary server publishes for a repository, verifies
their signatures, expiry and versions, and walks the delegation tree to
collect every signed target. The timestamp role bounds how long a frozen
view of the repository can be served; remembered versions reject rollbacks.
"""

import re
import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Callable

from .errors import TrustMetadataError
from .keys import TUFKey, load_keys
from .signatures import SignatureVerifier

logger = logging.getLogger(__name__)

ROOT_ROLE = "root"
TARGETS_ROLE = "targets"
SNAPSHOT_ROLE = "snapshot"
TIMESTAMP_ROLE = "timestamp"
RELEASES_ROLE = "targets/releases"

CANONICAL_ROLES = (ROOT_ROLE, TARGETS_ROLE, SNAPSHOT_ROLE, TIMESTAMP_ROLE)

MAX_DELEGATION_DEPTH = 8

_FRACTION_PATTERN = re.compile(r'\.(\d+)')

# role name -> envelope, or None when the server has no such role
MetadataFetcher = Callable[[str], Optional[Dict[str, Any]]]

# role name -> highest version seen so far
VersionMap = Dict[str, int]


def parse_expires(value: Any) -> datetime:
    """Parse an RFC 3339 expiry timestamp, tolerating nanosecond precision."""
    if not isinstance(value, str) or not value:
        raise TrustMetadataError("Metadata has no expiry")
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    text = _FRACTION_PATTERN.sub(lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    try:
        expires = datetime.fromisoformat(text)
    except ValueError:
        raise TrustMetadataError(f"Invalid expiry timestamp: {value}")
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires


def role_to_signer(role_name: str) -> str:
    """Strip the ``targets/`` prefix to get a human readable signer name."""
    prefix = TARGETS_ROLE + "/"
    if role_name.startswith(prefix):
        return role_name[len(prefix):]
    return role_name


def is_released_role(role_name: str) -> bool:
    """Targets signed by ``targets`` or ``targets/releases`` are released."""
    return role_name in (TARGETS_ROLE, RELEASES_ROLE)


class Role:
    """A role declaration: who may sign it and how many signatures it needs."""

    def __init__(self,
                 name: str,
                 key_ids: List[str],
                 threshold: int = 1,
                 paths: Optional[List[str]] = None):
        self.name = name
        self.key_ids = key_ids
        self.threshold = threshold
        self.paths = paths
        self.parent: Optional['Role'] = None

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'Role':
        """Build a role from a root ``roles`` entry or a delegation entry."""
        if not isinstance(data, dict):
            raise TrustMetadataError(f"Role {name} is not an object")
        key_ids = data.get('keyids') or []
        if not isinstance(key_ids, list):
            raise TrustMetadataError(f"Role {name} has an invalid keyids list")
        try:
            threshold = int(data.get('threshold', 1))
        except (TypeError, ValueError):
            raise TrustMetadataError(f"Role {name} has an invalid threshold")
        paths = data.get('paths')
        if paths is not None and not isinstance(paths, list):
            raise TrustMetadataError(f"Role {name} has an invalid paths list")
        return cls(name, list(key_ids), threshold, paths)

    def allows_target(self, target_name: str) -> bool:
        """
        Delegations only vouch for targets under one of their path prefixes.

        A nested delegation is also bound by the paths of every role above it.
        """
        if self.paths is not None and not any(target_name.startswith(path) for path in self.paths):
            return False
        if self.parent is not None:
            return self.parent.allows_target(target_name)
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'keyids': self.key_ids,
            'threshold': self.threshold,
            'paths': self.paths
        }


class Target:
    """A signed target: an image tag and the digest it resolves to."""

    def __init__(self, name: str, sha256: str, length: int = 0):
        self.name = name
        self.sha256 = sha256
        self.length = length

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'Target':
        if not isinstance(data, dict):
            raise TrustMetadataError(f"Target {name} is not an object")
        hashes = data.get('hashes') or {}
        encoded = hashes.get('sha256')
        if not isinstance(encoded, str):
            raise TrustMetadataError(f"Target {name} has no sha256 hash")
        try:
            digest = base64.b64decode(encoded, validate=True).hex()
        except (binascii.Error, ValueError):
            raise TrustMetadataError(f"Target {name} has an invalid sha256 hash")
        if len(digest) != 64:
            raise TrustMetadataError(f"Target {name} has a sha256 hash of the wrong length")
        return cls(name, digest, int(data.get('length') or 0))


class SignedTarget:
    """A target together with the role that signed it."""

    def __init__(self, role: Role, target: Target):
        self.role = role
        self.target = target


class RootMetadata:
    """The repository's root role: the key set and role declarations."""

    def __init__(self, keys: Dict[str, TUFKey], roles: Dict[str, Role], expires: datetime, version: int):
        self.keys = keys
        self.roles = roles
        self.expires = expires
        self.version = version

    @classmethod
    def from_envelope(cls, envelope: Dict[str, Any]) -> 'RootMetadata':
        signed = _signed_section(envelope, 'Root', ROOT_ROLE)
        keys = load_keys(signed.get('keys') or {})
        raw_roles = signed.get('roles')
        if not isinstance(raw_roles, dict):
            raise TrustMetadataError("Root metadata has no roles")
        roles = {name: Role.from_dict(name, data) for name, data in raw_roles.items()}
        for name in (ROOT_ROLE, TARGETS_ROLE):
            if name not in roles:
                raise TrustMetadataError(f"Root metadata does not declare the {name} role")
        return cls(keys, roles, parse_expires(signed.get('expires')), _version(signed, ROOT_ROLE))


class TargetsMetadata:
    """The targets role or one of its delegations."""

    def __init__(self,
                 role: Role,
                 targets: List[Target],
                 delegation_keys: Dict[str, TUFKey],
                 delegations: List[Role],
                 expires: datetime,
                 version: int = 0):
        self.role = role
        self.targets = targets
        self.delegation_keys = delegation_keys
        self.delegations = delegations
        self.expires = expires
        self.version = version

    @classmethod
    def from_envelope(cls, role: Role, envelope: Dict[str, Any]) -> 'TargetsMetadata':
        signed = _signed_section(envelope, 'Targets', role.name)
        raw_targets = signed.get('targets') or {}
        if not isinstance(raw_targets, dict):
            raise TrustMetadataError(f"Role {role.name} has an invalid targets section")
        targets = [Target.from_dict(name, data) for name, data in sorted(raw_targets.items())]

        delegations = signed.get('delegations') or {}
        if not isinstance(delegations, dict):
            raise TrustMetadataError(f"Role {role.name} has an invalid delegations section")
        delegation_keys = load_keys(delegations.get('keys') or {})
        raw_roles = delegations.get('roles') or []
        if not isinstance(raw_roles, list):
            raise TrustMetadataError(f"Role {role.name} has an invalid delegation roles list")
        delegated = []
        for entry in raw_roles:
            name = entry.get('name') if isinstance(entry, dict) else None
            if not isinstance(name, str) or not name.startswith(role.name + "/"):
                logger.warning("Ignoring delegation %r outside of role %s", name, role.name)
                continue
            delegated.append(Role.from_dict(name, entry))

        return cls(role, targets, delegation_keys, delegated, parse_expires(signed.get('expires')),
                   _version(signed, role.name))


class FileListMetadata:
    """The snapshot or timestamp role: the versions of the other roles it vouches for."""

    def __init__(self, role_name: str, meta: Dict[str, Any], expires: datetime, version: int):
        self.role_name = role_name
        self.meta = meta
        self.expires = expires
        self.version = version

    @classmethod
    def from_envelope(cls, role_name: str, envelope: Dict[str, Any]) -> 'FileListMetadata':
        signed = _signed_section(envelope, role_name.capitalize(), role_name)
        meta = signed.get('meta')
        if not isinstance(meta, dict):
            raise TrustMetadataError(f"Metadata for role {role_name} has no meta section")
        return cls(role_name, meta, parse_expires(signed.get('expires')), _version(signed, role_name))

    def lists(self, role_name: str) -> bool:
        return role_name in self.meta

    def listed_version(self, role_name: str) -> Optional[int]:
        entry = self.meta.get(role_name)
        if isinstance(entry, dict) and isinstance(entry.get('version'), int):
            return entry['version']
        return None


def _version(signed: Dict[str, Any], role_name: str) -> int:
    try:
        return int(signed.get('version') or 0)
    except (TypeError, ValueError):
        raise TrustMetadataError(f"Metadata for role {role_name} has an invalid version")


def _signed_section(envelope: Any, expected_type: str, role_name: str) -> Dict[str, Any]:
    if not isinstance(envelope, dict) or not isinstance(envelope.get('signed'), dict):
        raise TrustMetadataError(f"Metadata for role {role_name} is malformed")
    signed = envelope['signed']
    if signed.get('_type') != expected_type:
        raise TrustMetadataError(
            f"Metadata for role {role_name} has type {signed.get('_type')!r}, expected {expected_type}")
    return signed


class TUFRepository:
    """Verified trust metadata of one repository (GUN)."""

    def __init__(self,
                 gun: str,
                 root: RootMetadata,
                 targets_roles: List[TargetsMetadata]):
        self.gun = gun
        self.root = root
        self.targets_roles = targets_roles

    @classmethod
    def load(cls,
             gun: str,
             fetch: MetadataFetcher,
             verifier: Optional[SignatureVerifier] = None,
             check_expiry: bool = True,
             now: Optional[datetime] = None,
             known_versions: Optional[VersionMap] = None) -> Optional['TUFRepository']:
        """
        Fetch, verify and parse the metadata of a repository.

        The root role is trusted on first use and must be signed by its own
        keys; every other role must be signed by the keys its parent declares.
        When root declares timestamp and snapshot roles, both must be
        published and current, and every loaded targets role must be listed
        in the snapshot.

        Args:
            gun: Globally unique repository name
            fetch: Callable returning a role's envelope, or None if the server has none
            verifier: Signature verifier to use
            check_expiry: Reject metadata whose expiry is in the past
            now: Reference time for expiry checks
            known_versions: Highest versions seen on earlier loads; metadata
                older than these is rejected, and the map is updated on success

        Returns:
            TUFRepository, or None when the repository has no trust data
        """
        verifier = verifier or SignatureVerifier()
        now = now or datetime.now(timezone.utc)

        root_envelope = fetch(ROOT_ROLE)
        if root_envelope is None:
            return None
        root = RootMetadata.from_envelope(root_envelope)
        root_role = root.roles[ROOT_ROLE]
        verifier.require_valid(ROOT_ROLE, root_envelope, root.keys, root_role.key_ids, root_role.threshold)
        _check_expiry(ROOT_ROLE, root.expires, now, check_expiry)

        versions = {ROOT_ROLE: root.version}
        timestamp = cls._load_file_list(TIMESTAMP_ROLE, root, fetch, verifier, now, check_expiry)
        snapshot = cls._load_file_list(SNAPSHOT_ROLE, root, fetch, verifier, now, check_expiry)
        for metadata in (timestamp, snapshot):
            if metadata is not None:
                versions[metadata.role_name] = metadata.version
        if timestamp is not None and snapshot is not None:
            expected = timestamp.listed_version(SNAPSHOT_ROLE)
            if expected is not None and expected != snapshot.version:
                raise TrustMetadataError(
                    f"Snapshot version {snapshot.version} does not match timestamp ({expected})")

        targets_envelope = fetch(TARGETS_ROLE)
        if targets_envelope is None:
            return None
        targets_role = root.roles[TARGETS_ROLE]
        verifier.require_valid(TARGETS_ROLE, targets_envelope, root.keys,
                               targets_role.key_ids, targets_role.threshold)
        targets = TargetsMetadata.from_envelope(targets_role, targets_envelope)
        _check_expiry(TARGETS_ROLE, targets.expires, now, check_expiry)
        _check_listed(snapshot, targets)
        versions[TARGETS_ROLE] = targets.version

        loaded = [targets]
        queue = [(targets, 1)]
        visited = {TARGETS_ROLE}
        while queue:
            parent, depth = queue.pop(0)
            for delegation in parent.delegations:
                if delegation.name in visited:
                    continue
                visited.add(delegation.name)
                envelope = fetch(delegation.name)
                if envelope is None:
                    logger.debug("Delegation %s of %s is not published", delegation.name, gun)
                    continue
                verifier.require_valid(delegation.name, envelope, parent.delegation_keys,
                                       delegation.key_ids, delegation.threshold)
                delegation.parent = parent.role
                metadata = TargetsMetadata.from_envelope(delegation, envelope)
                _check_expiry(delegation.name, metadata.expires, now, check_expiry)
                _check_listed(snapshot, metadata)
                versions[delegation.name] = metadata.version
                loaded.append(metadata)
                if depth < MAX_DELEGATION_DEPTH:
                    queue.append((metadata, depth + 1))

        if known_versions is not None:
            _check_rollback(gun, versions, known_versions)
            known_versions.update(versions)

        return cls(gun, root, loaded)

    @staticmethod
    def _load_file_list(role_name: str,
                        root: RootMetadata,
                        fetch: MetadataFetcher,
                        verifier: SignatureVerifier,
                        now: datetime,
                        check_expiry: bool) -> Optional[FileListMetadata]:
        role = root.roles.get(role_name)
        if role is None:
            return None
        envelope = fetch(role_name)
        if envelope is None:
            raise TrustMetadataError(f"Repository declares a {role_name} role but does not publish it")
        verifier.require_valid(role_name, envelope, root.keys, role.key_ids, role.threshold)
        metadata = FileListMetadata.from_envelope(role_name, envelope)
        _check_expiry(role_name, metadata.expires, now, check_expiry)
        return metadata

    def all_signed_targets(self, name: Optional[str] = None) -> List[SignedTarget]:
        """
        Every target signed by any role, in delegation order.

        Args:
            name: Restrict to targets with this name (tag)
        """
        result = []
        for metadata in self.targets_roles:
            for target in metadata.targets:
                if name is not None and target.name != name:
                    continue
                if not metadata.role.allows_target(target.name):
                    continue
                result.append(SignedTarget(metadata.role, target))
        return result

    def base_roles(self) -> List[Role]:
        """The canonical roles declared by root."""
        return [role for name, role in self.root.roles.items() if name in CANONICAL_ROLES]

    def delegation_roles(self) -> List[Role]:
        """All delegation roles declared anywhere in the targets tree."""
        roles = []
        for metadata in self.targets_roles:
            roles.extend(metadata.delegations)
        return roles


def _check_expiry(role: str, expires: datetime, now: datetime, enabled: bool):
    if enabled and expires <= now:
        raise TrustMetadataError(f"Metadata for role {role} expired at {expires.isoformat()}")


def _check_listed(snapshot: Optional[FileListMetadata], metadata: TargetsMetadata):
    if snapshot is None:
        return
    name = metadata.role.name
    if not snapshot.lists(name):
        raise TrustMetadataError(f"Role {name} is not listed in the snapshot")
    expected = snapshot.listed_version(name)
    if expected is not None and expected != metadata.version:
        raise TrustMetadataError(f"Role {name} version {metadata.version} does not match the snapshot ({expected})")


def _check_rollback(gun: str, versions: VersionMap, known_versions: VersionMap):
    for role, version in versions.items():
        if version < known_versions.get(role, 0):
            raise TrustMetadataError(
                f"Metadata for role {role} of {gun} rolled back from version {known_versions[role]} to {version}")
