"""
Pull Secret Module

Extracts registry basic-auth credentials from Kubernetes image pull secrets.
"""

import json
import base64
import binascii
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

ID_FIELD = "ID"
PASSWORD_FIELD = "PASSWD"
DOCKER_CONFIG_JSON = ".dockerconfigjson"
DOCKER_CFG = ".dockercfg"


def _normalize_server(server: str) -> str:
    server = server.strip().rstrip('/')
    for prefix in ("https://", "http://"):
        if server.startswith(prefix):
            server = server[len(prefix):]
    # docker config entries sometimes carry the v1/v2 API path
    for suffix in ("/v1", "/v2"):
        if server.endswith(suffix):
            server = server[:-len(suffix)]
    return server


def encode_basic_auth(username: str, password: str) -> str:
    """Encode a username/password pair as a basic-auth token."""
    return base64.b64encode(f"{username}:{password}".encode('utf-8')).decode('ascii')


class ImagePullSecret:
    """Registry credentials carried by a pull secret."""

    def __init__(self, name: str, data: Dict[str, str]):
        """
        Args:
            name: Secret name
            data: Decoded secret data (plain text values)
        """
        self.name = name
        self.data = data

    @classmethod
    def from_resource(cls, secret: Dict[str, Any]) -> 'ImagePullSecret':
        """
        Build from a Secret resource.

        ``data`` values are base64 encoded as returned by the API server,
        ``stringData`` values are taken as they are.
        """
        name = secret.get('metadata', {}).get('name', '')
        data = {}
        for key, value in (secret.get('data') or {}).items():
            try:
                data[key] = base64.b64decode(value).decode('utf-8')
            except (binascii.Error, UnicodeDecodeError, TypeError):
                logger.warning("Skipping undecodable field %s in secret %s", key, name)
        for key, value in (secret.get('stringData') or {}).items():
            data[key] = value
        return cls(name, data)

    def get_host_basic_auth(self, registry_server: str) -> str:
        """
        Get the basic-auth token usable against a registry.

        Args:
            registry_server: Registry server URL, e.g. ``https://myreg.example.com``

        Returns:
            base64 ``user:password`` string, or "" when the secret holds no
            credential for the registry
        """
        if ID_FIELD in self.data and PASSWORD_FIELD in self.data:
            return encode_basic_auth(self.data[ID_FIELD], self.data[PASSWORD_FIELD])

        auths = self._docker_auths()
        wanted = _normalize_server(registry_server)
        for server, entry in auths.items():
            if _normalize_server(server) != wanted:
                continue
            auth = self._auth_from_entry(entry)
            if auth:
                return auth
        return ""

    def _docker_auths(self) -> Dict[str, Any]:
        if DOCKER_CONFIG_JSON in self.data:
            raw = self.data[DOCKER_CONFIG_JSON]
            nested = True
        elif DOCKER_CFG in self.data:
            raw = self.data[DOCKER_CFG]
            nested = False
        else:
            return {}

        try:
            config = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Secret %s carries an unparsable docker config", self.name)
            return {}

        if not isinstance(config, dict):
            return {}
        auths = config.get('auths', {}) if nested else config
        return auths if isinstance(auths, dict) else {}

    @staticmethod
    def _auth_from_entry(entry: Any) -> str:
        if not isinstance(entry, dict):
            return ""
        if entry.get('auth'):
            return entry['auth']
        username = entry.get('username')
        password = entry.get('password')
        if username and password:
            return encode_basic_auth(username, password)
        return ""
