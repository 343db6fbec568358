"""
TUF Key Module

Loads public keys declared in TUF metadata and computes their key IDs.
Supports the ECDSA, RSA and Ed25519 key types used by notary, either as bare
public keys or wrapped in X.509 certificates.
"""

import base64
import binascii
import hashlib
from typing import Dict, Any, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from .canonical import canonical_json
from .errors import TrustMetadataError

PublicKey = Union[EllipticCurvePublicKey, RSAPublicKey, Ed25519PublicKey]

ECDSA_KEY = "ecdsa"
ECDSA_X509_KEY = "ecdsa-x509"
RSA_KEY = "rsa"
RSA_X509_KEY = "rsa-x509"
ED25519_KEY = "ed25519"

SUPPORTED_KEY_TYPES = (ECDSA_KEY, ECDSA_X509_KEY, RSA_KEY, RSA_X509_KEY, ED25519_KEY)


class TUFKey:
    """A public key as declared in TUF metadata."""

    def __init__(self, key_type: str, public: str):
        """
        Args:
            key_type: TUF key type, e.g. ``ecdsa`` or ``rsa-x509``
            public: base64 encoded public key material
        """
        self.key_type = key_type
        self.public = public
        self._public_key = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TUFKey':
        """Build a key from its metadata representation."""
        if not isinstance(data, dict):
            raise TrustMetadataError("Key entry is not an object")
        key_type = data.get('keytype')
        public = (data.get('keyval') or {}).get('public')
        if not key_type or not isinstance(public, str):
            raise TrustMetadataError("Key entry is missing keytype or public value")
        return cls(key_type, public)

    def to_dict(self) -> Dict[str, Any]:
        """Convert key to its metadata representation."""
        return {
            'keytype': self.key_type,
            'keyval': {
                'private': None,
                'public': self.public
            }
        }

    @property
    def key_id(self) -> str:
        """SHA-256 over the canonical JSON form of the key."""
        return hashlib.sha256(canonical_json(self.to_dict())).hexdigest()

    def load(self) -> PublicKey:
        """
        Load the key material as a ``cryptography`` public key.

        Returns:
            Public key object

        Raises:
            TrustMetadataError: If the key type is unsupported or the material is invalid
        """
        if self._public_key is None:
            self._public_key = self._load()
        return self._public_key

    def _load(self) -> PublicKey:
        if self.key_type not in SUPPORTED_KEY_TYPES:
            raise TrustMetadataError(f"Unsupported key type: {self.key_type}")

        try:
            material = base64.b64decode(self.public)
        except (binascii.Error, ValueError) as e:
            raise TrustMetadataError(f"Key material is not valid base64: {e}")

        try:
            if self.key_type in (ECDSA_X509_KEY, RSA_X509_KEY):
                certificate = x509.load_pem_x509_certificate(material)
                public_key = certificate.public_key()
            elif self.key_type == ED25519_KEY:
                public_key = Ed25519PublicKey.from_public_bytes(material)
            else:
                public_key = serialization.load_der_public_key(material)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise TrustMetadataError(f"Unable to load {self.key_type} key: {e}")

        expected = {
            ECDSA_KEY: EllipticCurvePublicKey,
            ECDSA_X509_KEY: EllipticCurvePublicKey,
            RSA_KEY: RSAPublicKey,
            RSA_X509_KEY: RSAPublicKey,
            ED25519_KEY: Ed25519PublicKey,
        }[self.key_type]
        if not isinstance(public_key, expected):
            raise TrustMetadataError(f"Key material does not match key type {self.key_type}")

        return public_key


def load_keys(raw_keys: Dict[str, Any]) -> Dict[str, TUFKey]:
    """
    Load a ``keys`` map from TUF metadata.

    Args:
        raw_keys: Mapping of key ID to key entry

    Returns:
        Mapping of key ID to TUFKey
    """
    if not isinstance(raw_keys, dict):
        raise TrustMetadataError("Keys section is not an object")
    return {key_id: TUFKey.from_dict(entry) for key_id, entry in raw_keys.items()}
