"""Configuration management for image-trust-webhook."""

import os
import yaml
from typing import Dict, Any, Optional, Union

from ..cluster.kubernetes import DEFAULT_POLICY_API_GROUP
from ..notary.client import DEFAULT_NOTARY_SERVER, DEFAULT_TIMEOUT
from ..policy.whitelist import DEFAULT_WHITELIST_NAMESPACE, DEFAULT_WHITELIST_CONFIG_MAP
from ..utils.logger import resolve_level

CONFIG_PATH_ENV = "IMAGE_TRUST_CONFIG"

CLUSTER_BACKENDS = ("kubernetes", "static")

# key -> (environment variable, type, default)
_OPTIONS = {
    'port': ("PORT", int, 8443),
    'tls_cert_path': ("TLS_CERT_PATH", str, "/app/certs/tls.crt"),
    'tls_key_path': ("TLS_KEY_PATH", str, "/app/certs/tls.key"),
    'log_level': ("LOG_LEVEL", str, "INFO"),
    'log_file': ("LOG_FILE", str, None),
    'cluster_backend': ("CLUSTER_BACKEND", str, "kubernetes"),
    'static_state_path': ("STATIC_STATE_PATH", str, None),
    'whitelist_namespace': ("WHITELIST_NAMESPACE", str, DEFAULT_WHITELIST_NAMESPACE),
    'whitelist_configmap': ("WHITELIST_CONFIGMAP", str, DEFAULT_WHITELIST_CONFIG_MAP),
    'whitelist_images': ("WHITELIST_IMAGES", list, []),
    'whitelist_namespaces': ("WHITELIST_NAMESPACES", list, []),
    'refresh_interval': ("REFRESH_INTERVAL", float, 60.0),
    'request_timeout': ("REQUEST_TIMEOUT", float, float(DEFAULT_TIMEOUT)),
    'verify_tls': ("VERIFY_TLS", bool, True),
    'ca_bundle': ("CA_BUNDLE", str, None),
    'check_expiry': ("CHECK_EXPIRY", bool, True),
    'default_notary_url': ("DEFAULT_NOTARY_URL", str, DEFAULT_NOTARY_SERVER),
    'policy_api_group': ("POLICY_API_GROUP", str, DEFAULT_POLICY_API_GROUP),
}


def _convert(key: str, value: Any, kind: type) -> Any:
    if value is None:
        return None
    if kind is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "1", "yes", "on"):
            return True
        if text in ("false", "0", "no", "off"):
            return False
        raise ValueError(f"Invalid boolean for {key}: {value}")
    if kind is list:
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        return [v.strip() for v in str(value).split(',') if v.strip()]
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {key}: {value}")


class Settings:
    """Configuration manager: defaults, then the YAML file, then environment variables."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        environ = os.environ if environ is None else environ
        self.config_path = config_path or environ.get(CONFIG_PATH_ENV)

        file_values = self._load_file(self.config_path) if self.config_path else {}
        unknown = set(file_values) - set(_OPTIONS)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        self._values: Dict[str, Any] = {}
        for key, (env_name, kind, default) in _OPTIONS.items():
            value = default
            if key in file_values:
                value = file_values[key]
            if env_name in environ:
                value = environ[env_name]
            self._values[key] = _convert(key, value, kind)

        self._validate()

    @staticmethod
    def _load_file(path: str) -> Dict[str, Any]:
        if not os.path.exists(path):
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must hold a mapping")
        return data

    def _validate(self):
        if self.cluster_backend not in CLUSTER_BACKENDS:
            raise ValueError(f"cluster_backend must be one of {', '.join(CLUSTER_BACKENDS)}")
        if self.cluster_backend == "static" and not self.static_state_path:
            raise ValueError("static_state_path is required for the static cluster backend")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}")
        if self.refresh_interval < 0:
            raise ValueError("refresh_interval must not be negative")
        resolve_level(self.log_level)

    def __getattr__(self, name: str) -> Any:
        values = self.__dict__.get('_values', {})
        if name in values:
            return values[name]
        raise AttributeError(name)

    @property
    def tls_verify(self) -> Union[bool, str]:
        """Value for the ``verify`` argument of requests."""
        if self.verify_tls and self.ca_bundle:
            return self.ca_bundle
        return self.verify_tls

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)
