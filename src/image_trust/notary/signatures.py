"""
Signature Verifier Module

Verifies the signatures attached to TUF role metadata against the keys and
threshold that the parent role declares for it.
"""

import base64
import binascii
import logging
from typing import Dict, Any, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from .canonical import canonical_json
from .errors import TrustMetadataError
from .keys import TUFKey

logger = logging.getLogger(__name__)

ECDSA_METHOD = "ecdsa"
RSAPSS_METHOD = "rsapss"
RSA_PKCS1V15_METHOD = "rsapkcs1v15"
ED25519_METHOD = "ed25519"


class VerificationResult:
    """Result of verifying one role's signatures."""

    def __init__(self,
                 role: str,
                 is_valid: bool,
                 valid_key_ids: Optional[List[str]] = None,
                 threshold: int = 1,
                 message: str = ""):
        self.role = role
        self.is_valid = is_valid
        self.valid_key_ids = valid_key_ids or []
        self.threshold = threshold
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert verification result to dictionary."""
        return {
            'role': self.role,
            'is_valid': self.is_valid,
            'valid_key_ids': self.valid_key_ids,
            'threshold': self.threshold,
            'message': self.message
        }


class SignatureVerifier:
    """Verifies TUF role signatures."""

    def verify_role(self,
                    role: str,
                    envelope: Dict[str, Any],
                    keys: Dict[str, TUFKey],
                    key_ids: List[str],
                    threshold: int) -> VerificationResult:
        """
        Verify a signed role envelope.

        Args:
            role: Role name, used in messages
            envelope: ``{"signed": {...}, "signatures": [...]}`` metadata document
            keys: Keys known to the parent role, by key ID
            key_ids: Key IDs authorized for this role
            threshold: Number of distinct authorized keys that must have signed

        Returns:
            VerificationResult listing the authorized keys with a valid signature
        """
        threshold = max(int(threshold or 1), 1)
        payload = canonical_json(envelope.get('signed'))
        authorized = set(key_ids)
        valid_key_ids = []

        for signature in envelope.get('signatures') or []:
            if not isinstance(signature, dict):
                continue
            key_id = signature.get('keyid')
            if key_id not in authorized or key_id in valid_key_ids:
                continue
            key = keys.get(key_id)
            if key is None:
                continue
            try:
                sig_bytes = base64.b64decode(signature.get('sig') or '')
            except (binascii.Error, ValueError):
                logger.debug("Undecodable signature by key %s on role %s", key_id, role)
                continue

            if self._verify_signature(payload, sig_bytes, key, signature.get('method', '')):
                valid_key_ids.append(key_id)

        is_valid = len(valid_key_ids) >= threshold
        message = (f"{len(valid_key_ids)} of {threshold} required signatures verified "
                   f"for role {role}")
        return VerificationResult(role, is_valid, valid_key_ids, threshold, message)

    def require_valid(self,
                      role: str,
                      envelope: Dict[str, Any],
                      keys: Dict[str, TUFKey],
                      key_ids: List[str],
                      threshold: int) -> VerificationResult:
        """Like ``verify_role`` but raises TrustMetadataError when the threshold is not met."""
        result = self.verify_role(role, envelope, keys, key_ids, threshold)
        if not result.is_valid:
            raise TrustMetadataError(f"Signature verification failed: {result.message}")
        return result

    def _verify_signature(self, data: bytes, signature: bytes, key: TUFKey, method: str) -> bool:
        try:
            public_key = key.load()
        except TrustMetadataError as e:
            logger.debug("Skipping unusable key %s: %s", key.key_id, e)
            return False

        try:
            if isinstance(public_key, EllipticCurvePublicKey):
                return self._verify_ecdsa_signature(data, signature, public_key, method)
            elif isinstance(public_key, RSAPublicKey):
                return self._verify_rsa_signature(data, signature, public_key, method)
            elif isinstance(public_key, Ed25519PublicKey):
                if method != ED25519_METHOD:
                    return False
                public_key.verify(signature, data)
                return True
        except InvalidSignature:
            return False
        return False

    def _verify_ecdsa_signature(self,
                                data: bytes,
                                signature: bytes,
                                public_key: EllipticCurvePublicKey,
                                method: str) -> bool:
        """Verify an ECDSA signature encoded as raw ``r || s``."""
        if method != ECDSA_METHOD:
            return False
        size = (public_key.curve.key_size + 7) // 8
        if len(signature) != 2 * size:
            return False
        r = int.from_bytes(signature[:size], 'big')
        s = int.from_bytes(signature[size:], 'big')
        public_key.verify(encode_dss_signature(r, s), data, ec.ECDSA(hashes.SHA256()))
        return True

    def _verify_rsa_signature(self,
                              data: bytes,
                              signature: bytes,
                              public_key: RSAPublicKey,
                              method: str) -> bool:
        """Verify RSA signature."""
        if method == RSAPSS_METHOD:
            public_key.verify(
                signature,
                data,
                padding.PSS(
                    mgf=padding.MGF1(hashes.SHA256()),
                    salt_length=padding.PSS.DIGEST_LENGTH
                ),
                hashes.SHA256()
            )
        elif method == RSA_PKCS1V15_METHOD:
            public_key.verify(
                signature,
                data,
                padding.PKCS1v15(),
                hashes.SHA256()
            )
        else:
            return False

        return True
