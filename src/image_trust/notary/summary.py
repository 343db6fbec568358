"""
Trust Summary Module

Reduces verified TUF metadata into the human readable summary of a
repository: which tags are released, which digests they resolve to, who
signed them and which keys administer the repository.
"""

import re
import json
from typing import Dict, Any, List, Optional

from .tuf import TUFRepository, ROOT_ROLE, TARGETS_ROLE, RELEASES_ROLE, CANONICAL_ROLES
from .tuf import is_released_role, role_to_signer

REPO_ADMIN_SIGNER = "Repo Admin"
ROOT_KEYS_NAME = "Root"
REPOSITORY_KEYS_NAME = "Repository"

_NUMBER_PATTERN = re.compile(r'(\d+)')


def natural_sort_key(value: str) -> List[Any]:
    """Sort key that orders ``v2`` before ``v10``."""
    return [(0, int(part), '') if part.isdigit() else (1, 0, part)
            for part in _NUMBER_PATTERN.split(value) if part]


class SignedTag:
    """A released tag, the digest it is signed for and the signers that vouch for it."""

    def __init__(self, tag: str, digest: str, signers: Optional[List[str]] = None):
        self.tag = tag
        self.digest = digest
        self.signers = signers or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tag': self.tag,
            'digest': self.digest,
            'signers': self.signers
        }


class TrustSigner:
    """A named signer and the key IDs it signs with."""

    def __init__(self, name: str, key_ids: Optional[List[str]] = None):
        self.name = name
        self.key_ids = key_ids or []

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'key_ids': self.key_ids
        }


class TrustSummary:
    """Signed trust data of one repository."""

    def __init__(self,
                 repository_name: str,
                 signed_tags: List[SignedTag],
                 signers: List[TrustSigner],
                 administrative_keys: List[TrustSigner]):
        self.repository_name = repository_name
        self.signed_tags = signed_tags
        self.signers = signers
        self.administrative_keys = administrative_keys

    @property
    def is_empty(self) -> bool:
        return not self.signed_tags

    def rows_for_tag(self, tag: str) -> List[SignedTag]:
        """All signed-tag rows for a tag, in summary order."""
        return [row for row in self.signed_tags if row.tag == tag]

    def digests_for_tag(self, tag: str) -> List[str]:
        """Distinct digests signed for a tag, in summary order."""
        digests = []
        for row in self.rows_for_tag(tag):
            if row.digest not in digests:
                digests.append(row.digest)
        return digests

    def administrative_key_ids(self) -> List[str]:
        """Key IDs of the root and repository (targets) roles."""
        key_ids = []
        for admin in self.administrative_keys:
            key_ids.extend(admin.key_ids)
        return key_ids

    def signer_key_ids(self, signer_names: List[str]) -> List[str]:
        """Key IDs of the named delegated signers."""
        key_ids = []
        for signer in self.signers:
            if signer.name in signer_names:
                key_ids.extend(signer.key_ids)
        return key_ids

    def to_dict(self) -> Dict[str, Any]:
        """Convert trust summary to dictionary format."""
        return {
            'name': self.repository_name,
            'signed_tags': [row.to_dict() for row in self.signed_tags],
            'signers': [signer.to_dict() for signer in self.signers],
            'administrative_keys': [admin.to_dict() for admin in self.administrative_keys]
        }

    def to_json(self, indent: int = 2) -> str:
        """Convert trust summary to JSON string."""
        return json.dumps(self.to_dict(), indent=indent)


def match_released_signatures(repository: TUFRepository, tag: Optional[str] = None) -> List[SignedTag]:
    """
    Build one row per released (tag, digest) pair.

    A pair is released when ``targets`` or ``targets/releases`` signed it.
    Every other delegated role that signed the same pair is listed as a
    signer; rows without one are attributed to the repository admin.

    Args:
        repository: Verified trust metadata
        tag: Only consider targets with this name

    Returns:
        Rows in natural tag order
    """
    signed_targets = repository.all_signed_targets(tag)

    released: Dict[tuple, List[str]] = {}
    for signed in signed_targets:
        if is_released_role(signed.role.name):
            released.setdefault((signed.target.name, signed.target.sha256), [])

    for signed in signed_targets:
        key = (signed.target.name, signed.target.sha256)
        if key in released and not is_released_role(signed.role.name):
            signer = role_to_signer(signed.role.name)
            if signer not in released[key]:
                released[key].append(signer)

    rows = []
    for (target_name, digest), signers in released.items():
        rows.append(SignedTag(target_name, digest, signers or [REPO_ADMIN_SIGNER]))
    rows.sort(key=lambda row: natural_sort_key(row.tag))
    return rows


def build_trust_summary(repository: TUFRepository, tag: Optional[str] = None) -> TrustSummary:
    """
    Reduce verified metadata to a TrustSummary.

    Args:
        repository: Verified trust metadata
        tag: Only summarize this tag

    Returns:
        TrustSummary for the repository
    """
    signed_tags = match_released_signatures(repository, tag)

    signer_keys: Dict[str, List[str]] = {}
    for role in repository.delegation_roles():
        if role.name == RELEASES_ROLE or role.name in CANONICAL_ROLES:
            continue
        signer_keys[role_to_signer(role.name)] = list(role.key_ids)
    signers = [TrustSigner(name, key_ids) for name, key_ids in signer_keys.items()]
    signers.sort(key=lambda signer: signer.name, reverse=True)

    administrative_keys = []
    for role in repository.base_roles():
        if role.name == ROOT_ROLE:
            administrative_keys.append(TrustSigner(ROOT_KEYS_NAME, list(role.key_ids)))
        elif role.name == TARGETS_ROLE:
            administrative_keys.append(TrustSigner(REPOSITORY_KEYS_NAME, list(role.key_ids)))
    administrative_keys.sort(key=lambda admin: admin.name, reverse=True)

    return TrustSummary(repository.gun, signed_tags, signers, administrative_keys)
