"""
Trust Client Module

Protocol client for a notary (TUF) trust server. Authenticates against the
server the way a registry client does, downloads the signed metadata of a
repository and reduces it to a TrustSummary.
"""

import re
import time
import hashlib
import logging
import threading
from typing import Dict, Any, Optional, Tuple

import requests

from ..images.reference import ImageReference
from .errors import TrustRetrievalError, TrustMetadataError
from .signatures import SignatureVerifier
from .summary import TrustSummary, build_trust_summary
from .tuf import TUFRepository, VersionMap

logger = logging.getLogger(__name__)

DEFAULT_NOTARY_SERVER = "https://notary.docker.io"
DEFAULT_TOKEN_LIFETIME = 60
DEFAULT_TIMEOUT = 30
MAX_CACHED_TOKENS = 256
MAX_TRACKED_REPOSITORIES = 1024

_CHALLENGE_PARAM = re.compile(r'([A-Za-z_][\w-]*)\s*=\s*(?:"((?:[^"\\]|\\.)*)"|([^\s,]+))')


def parse_auth_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """
    Parse the first challenge of a ``WWW-Authenticate`` header.

    Args:
        header: Header value, e.g. ``Bearer realm="https://auth",service="notary"``

    Returns:
        Tuple of (lowercased scheme, parameters)
    """
    header = (header or '').strip()
    if not header:
        return '', {}
    parts = header.split(None, 1)
    scheme = parts[0].lower()
    params = {}
    if len(parts) > 1:
        for match in _CHALLENGE_PARAM.finditer(parts[1]):
            key = match.group(1).lower()
            value = match.group(2) if match.group(2) is not None else match.group(3)
            params.setdefault(key, value.replace('\\"', '"'))
    return scheme, params


class AuthToken:
    """An Authorization header value and when it stops being usable."""

    def __init__(self, scheme: str, value: str, expires_at: Optional[float] = None):
        self.scheme = scheme
        self.value = value
        self.expires_at = expires_at

    @property
    def header(self) -> str:
        return f"{self.scheme} {self.value}"

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


ANONYMOUS = AuthToken('', '')


class TrustClient:
    """Fetches and summarizes signed trust metadata from notary servers."""

    def __init__(self,
                 default_notary_url: str = DEFAULT_NOTARY_SERVER,
                 session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 verify_tls: Any = True,
                 check_expiry: bool = True,
                 verifier: Optional[SignatureVerifier] = None):
        """
        Initialize the trust client.

        Args:
            default_notary_url: Server used when a policy names none
            session: requests session to reuse connections with
            timeout: Per-request timeout in seconds
            verify_tls: TLS verification flag or CA bundle path
            check_expiry: Reject expired metadata
            verifier: Signature verifier for role metadata
        """
        self.default_notary_url = default_notary_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.verify_tls = verify_tls
        self.check_expiry = check_expiry
        self.verifier = verifier or SignatureVerifier()

        self._tokens: Dict[Tuple[str, str, str], AuthToken] = {}
        self._versions: Dict[Tuple[str, str], VersionMap] = {}
        self._lock = threading.Lock()

    def fetch_signature(self,
                        image: str,
                        basic_auth: str = "",
                        notary_url: str = "") -> Optional[TrustSummary]:
        """
        Fetch the trust summary for an image's tag.

        Args:
            image: Image reference
            basic_auth: base64 ``user:password`` for the registry, or ""
            notary_url: Notary server URL, default server if empty

        Returns:
            TrustSummary, or None when the image has no signed trust data

        Raises:
            TrustRetrievalError: On network, HTTP or authentication failures
            TrustMetadataError: On malformed or unverifiable metadata
        """
        ref = ImageReference.parse(image)
        gun = ref.name_with_host
        server = (notary_url or self.default_notary_url).rstrip('/')

        def fetch(role: str) -> Optional[Dict[str, Any]]:
            return self._fetch_role(server, gun, role, basic_auth)

        with self._lock:
            known_versions = dict(self._versions.get((server, gun), {}))

        repository = TUFRepository.load(gun, fetch, verifier=self.verifier, check_expiry=self.check_expiry,
                                         known_versions=known_versions)
        self._remember_versions(server, gun, known_versions)
        if repository is None:
            logger.info("No trust data for %s on %s", gun, server)
            return None

        summary = build_trust_summary(repository, ref.tag)
        if summary.is_empty:
            logger.info("Tag %s of %s is not signed", ref.tag, gun)
            return None
        return summary

    def get_token(self, server: str, gun: str, basic_auth: str = "", force: bool = False) -> AuthToken:
        """
        Get the credential to present to a notary server for a repository.

        Cached credentials are reused until they expire or ``force`` is set.

        Args:
            server: Notary server URL
            gun: Repository name the token is scoped to
            basic_auth: Registry basic-auth token, or ""
            force: Discard any cached credential first

        Returns:
            AuthToken, ``ANONYMOUS`` if the server needs no authentication
        """
        key = (server, gun, hashlib.sha256(basic_auth.encode('utf-8')).hexdigest())
        with self._lock:
            token = self._tokens.get(key)
            if token is not None and not force and not token.is_expired():
                return token

        token = self._fetch_token(server, gun, basic_auth)
        with self._lock:
            self._tokens.pop(key, None)
            self._prune_tokens()
            self._tokens[key] = token
        return token

    def _remember_versions(self, server: str, gun: str, versions: VersionMap):
        with self._lock:
            merged = self._versions.pop((server, gun), {})
            for role, version in versions.items():
                merged[role] = max(version, merged.get(role, 0))
            while len(self._versions) >= MAX_TRACKED_REPOSITORIES:
                del self._versions[next(iter(self._versions))]
            self._versions[(server, gun)] = merged

    def _prune_tokens(self):
        # caller holds the lock
        now = time.monotonic()
        for key in [k for k, t in self._tokens.items() if t.is_expired(now)]:
            del self._tokens[key]
        while len(self._tokens) >= MAX_CACHED_TOKENS:
            del self._tokens[next(iter(self._tokens))]

    def _fetch_token(self, server: str, gun: str, basic_auth: str) -> AuthToken:
        logger.debug("Fetching token for %s from %s", gun, server)
        headers = {}
        if basic_auth:
            headers['Authorization'] = f"Basic {basic_auth}"

        ping = self._request(f"{server}/v2/", headers)
        if 200 <= ping.status_code < 300:
            return AuthToken('Basic', basic_auth) if basic_auth else ANONYMOUS

        scheme, params = parse_auth_challenge(ping.headers.get('WWW-Authenticate', ''))
        if not scheme:
            raise TrustRetrievalError(
                f"Notary server {server} answered {ping.status_code} without a WWW-Authenticate header",
                status_code=ping.status_code)

        if scheme == 'basic':
            if not basic_auth:
                raise TrustRetrievalError(
                    f"Notary server {server} requires credentials", status_code=ping.status_code)
            return AuthToken('Basic', basic_auth)

        realm = params.get('realm')
        service = params.get('service')
        if scheme != 'bearer' or not realm or not service:
            raise TrustRetrievalError(
                f"Notary server {server} sent an unusable challenge: no realm or service")

        return self._request_bearer_token(realm, service, gun, basic_auth)

    def _request_bearer_token(self, realm: str, service: str, gun: str, basic_auth: str) -> AuthToken:
        headers = {}
        if basic_auth:
            headers['Authorization'] = f"Basic {basic_auth}"
        params = {
            'service': service,
            'scope': f"repository:{gun}:pull,push"
        }

        response = self._request(realm, headers, params=params)
        if not 200 <= response.status_code < 300:
            raise TrustRetrievalError(
                f"Token request to {realm} failed: {response.status_code}", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            raise TrustRetrievalError(f"Token response from {realm} is not JSON")

        value = (body.get('token') or body.get('access_token')) if isinstance(body, dict) else None
        if not value:
            raise TrustRetrievalError(f"Token response from {realm} carries no token")

        try:
            lifetime = int(body.get('expires_in') or DEFAULT_TOKEN_LIFETIME)
        except (TypeError, ValueError):
            lifetime = DEFAULT_TOKEN_LIFETIME
        return AuthToken('Bearer', value, time.monotonic() + lifetime)

    def _fetch_role(self, server: str, gun: str, role: str, basic_auth: str) -> Optional[Dict[str, Any]]:
        url = f"{server}/v2/{gun}/_trust/tuf/{role}.json"
        token = self.get_token(server, gun, basic_auth)
        response = self._request(url, self._auth_headers(token))

        if response.status_code == 401:
            # the cached token may have been revoked or expired early
            logger.debug("Re-authenticating to %s after 401 on %s", server, role)
            token = self.get_token(server, gun, basic_auth, force=True)
            response = self._request(url, self._auth_headers(token))

        if response.status_code == 404:
            return None
        if not 200 <= response.status_code < 300:
            raise TrustRetrievalError(
                f"Fetching {role} metadata of {gun} failed: {response.status_code}",
                status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            raise TrustMetadataError(f"Metadata for role {role} of {gun} is not valid JSON")

    @staticmethod
    def _auth_headers(token: AuthToken) -> Dict[str, str]:
        if not token.scheme:
            return {}
        return {'Authorization': token.header}

    def _request(self, url: str, headers: Dict[str, str], params: Optional[Dict[str, str]] = None):
        try:
            return self.session.get(url, headers=headers, params=params,
                                    timeout=self.timeout, verify=self.verify_tls)
        except requests.RequestException as e:
            logger.error("Request to %s failed: %s", url, e)
            raise TrustRetrievalError(f"Request to {url} failed: {e}")
