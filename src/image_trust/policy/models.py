"""
Policy Models Module

Record types built from the cluster's policy resources.
"""

import json
from typing import Dict, List, Any, Optional


def normalize_registry(registry: str) -> str:
    """Reduce a registry URL or host to a bare ``host[:port]``."""
    registry = (registry or '').strip()
    for prefix in ("https://", "http://"):
        if registry.startswith(prefix):
            registry = registry[len(prefix):]
    return registry.rstrip('/')


def parse_flag(value: Any) -> bool:
    """
    Read a boolean field that may have been written as a string.

    Unrecognized strings count as true, which keeps signature checks on.
    """
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "off", "")
    return bool(value)


class RegistrySecurityPolicy:
    """Security policy of one registry, scoped to a namespace or cluster wide."""

    def __init__(self,
                 registry: str,
                 notary: str = "",
                 sign_check: bool = False,
                 namespace: Optional[str] = None):
        """
        Args:
            registry: Registry host the policy applies to
            notary: Notary server URL; no signature check is possible without one
            sign_check: Whether images must be signed
            namespace: Namespace scope, None for a cluster-wide policy
        """
        self.registry = normalize_registry(registry)
        self.notary = notary or ""
        self.sign_check = sign_check
        self.namespace = namespace

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> List['RegistrySecurityPolicy']:
        """
        Build policies from a RegistrySecurityPolicy resource.

        One resource lists several registries under ``spec.registries``.
        """
        namespace = (resource.get('metadata') or {}).get('namespace') or None
        entries = (resource.get('spec') or {}).get('registries') or []
        policies = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get('registry'):
                continue
            policies.append(cls(
                registry=entry['registry'],
                notary=entry.get('notary', ''),
                sign_check=parse_flag(entry.get('signCheck', False)),
                namespace=namespace
            ))
        return policies

    def to_dict(self) -> Dict[str, Any]:
        return {
            'registry': self.registry,
            'notary': self.notary,
            'sign_check': self.sign_check,
            'namespace': self.namespace
        }


class SignerPolicy:
    """Signers authorized to sign images run in a namespace."""

    def __init__(self, name: str, namespace: str, signers: List[str]):
        self.name = name
        self.namespace = namespace
        self.signers = signers

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'SignerPolicy':
        metadata = resource.get('metadata') or {}
        signers = (resource.get('spec') or {}).get('signers') or []
        return cls(metadata.get('name', ''), metadata.get('namespace', ''), [str(s) for s in signers])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'namespace': self.namespace,
            'signers': self.signers
        }


class SignerKey:
    """Target key IDs owned by a signer."""

    def __init__(self, signer_name: str, target_key_ids: List[str]):
        self.signer_name = signer_name
        self.target_key_ids = target_key_ids

    @classmethod
    def from_resource(cls, resource: Dict[str, Any]) -> 'SignerKey':
        """
        Build from a SignerKey resource.

        ``spec.targets`` is either a map keyed by key ID or a list of
        objects carrying an ``id``.
        """
        name = (resource.get('metadata') or {}).get('name', '')
        targets = (resource.get('spec') or {}).get('targets') or {}
        if isinstance(targets, dict):
            key_ids = [str(key_id) for key_id in targets.keys()]
        else:
            key_ids = []
            for target in targets:
                if isinstance(target, dict) and (target.get('id') or target.get('ID')):
                    key_ids.append(str(target.get('id') or target.get('ID')))
                elif isinstance(target, str):
                    key_ids.append(target)
        return cls(name, key_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'signer_name': self.signer_name,
            'target_key_ids': self.target_key_ids
        }


def _parse_list(value: Any) -> List[str]:
    """Config map values hold a JSON list or one entry per line."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if not text:
        return []
    if text.startswith('['):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            raise ValueError(f"Invalid whitelist entry list: {text[:40]}")
        return [str(v).strip() for v in parsed if str(v).strip()]
    return [line.strip() for line in text.replace(',', '\n').splitlines() if line.strip()]


class WhiteList:
    """Images and namespaces exempt from validation."""

    IMAGES_KEY = "whitelist-images"
    NAMESPACES_KEY = "whitelist-namespaces"

    def __init__(self, by_images: Optional[List[str]] = None, by_namespaces: Optional[List[str]] = None):
        self.by_images = by_images or []
        self.by_namespaces = by_namespaces or []

    @classmethod
    def from_config_map(cls, config_map: Optional[Dict[str, Any]]) -> 'WhiteList':
        """Build from a ConfigMap resource; a missing config map whitelists nothing."""
        if not config_map:
            return cls()
        data = config_map.get('data') or {}
        return cls(_parse_list(data.get(cls.IMAGES_KEY)), _parse_list(data.get(cls.NAMESPACES_KEY)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'by_images': self.by_images,
            'by_namespaces': self.by_namespaces
        }
