"""
Test suite for the notary trust client.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from image_trust.notary import client as client_module
from image_trust.notary.client import TrustClient, AuthToken, parse_auth_challenge, ANONYMOUS
from image_trust.notary.errors import TrustRetrievalError, TrustMetadataError

from tuf_helpers import TrustRepoBuilder, digest_of

NOTARY = "https://notary.example.com"
REALM = "https://auth.example.com/token"
BEARER_CHALLENGE = f'Bearer realm="{REALM}",service="notary.example.com"'


class FakeResponse:
    def __init__(self, status_code=200, body=None, headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}

    def json(self):
        if self.body is None:
            raise ValueError("No JSON body")
        return self.body


class FakeNotary:
    """Routes requests the way a notary server and its token service would."""

    def __init__(self, roles, challenge=None, token="t0ken"):
        self.roles = roles
        self.challenge = challenge
        self.token = token
        self.calls = []
        self.token_requests = []
        self.unauthorized_once = set()

    def get(self, url, headers=None, params=None, timeout=None, verify=None):
        headers = headers or {}
        self.calls.append((url, dict(headers)))

        if url == REALM:
            self.token_requests.append(params)
            return FakeResponse(200, {'token': self.token, 'expires_in': 300})

        if url.endswith('/v2/'):
            if self.challenge:
                return FakeResponse(401, headers={'WWW-Authenticate': self.challenge})
            return FakeResponse(200, {})

        role = url.split('/_trust/tuf/', 1)[1][:-len('.json')]
        if role in self.unauthorized_once:
            self.unauthorized_once.discard(role)
            return FakeResponse(401)
        if self.challenge and headers.get('Authorization') != f"Bearer {self.token}":
            return FakeResponse(401)
        if role not in self.roles:
            return FakeResponse(404)
        return FakeResponse(200, self.roles[role])


class TestParseAuthChallenge:
    """Test cases for WWW-Authenticate parsing."""

    def test_bearer_challenge(self):
        scheme, params = parse_auth_challenge(BEARER_CHALLENGE)

        assert scheme == 'bearer'
        assert params == {'realm': REALM, 'service': 'notary.example.com'}

    def test_basic_challenge(self):
        scheme, params = parse_auth_challenge('Basic realm="Registry Realm"')

        assert scheme == 'basic'
        assert params['realm'] == "Registry Realm"

    def test_empty_header(self):
        assert parse_auth_challenge('') == ('', {})


class TestAuthToken:
    def test_expiry(self):
        token = AuthToken('Bearer', 'abc', expires_at=100.0)

        assert token.header == "Bearer abc"
        assert not token.is_expired(now=99.0)
        assert token.is_expired(now=100.0)
        assert not ANONYMOUS.is_expired()


class TestTrustClient:
    """Test cases for TrustClient class."""

    def setup_method(self):
        self.digest = digest_of("app-v1")
        self.builder = TrustRepoBuilder()
        self.builder.add_target("v1", self.digest)
        self.notary = FakeNotary(self.builder.metadata())
        self.session = MagicMock()
        self.session.get.side_effect = self.notary.get
        self.client = TrustClient(default_notary_url=NOTARY, session=self.session, timeout=5)

    def test_fetch_signature_anonymous(self):
        summary = self.client.fetch_signature("registry.example.com/team/app:v1")

        assert summary.repository_name == "registry.example.com/team/app"
        assert summary.digests_for_tag("v1") == [self.digest]
        urls = [url for url, _ in self.notary.calls]
        assert urls[0] == f"{NOTARY}/v2/"
        assert f"{NOTARY}/v2/registry.example.com/team/app/_trust/tuf/root.json" in urls

    def test_request_options(self):
        client = TrustClient(default_notary_url=NOTARY, session=self.session, timeout=7,
                             verify_tls="/etc/ca.pem")

        client.fetch_signature("registry.example.com/team/app:v1")

        _, kwargs = self.session.get.call_args
        assert kwargs['timeout'] == 7
        assert kwargs['verify'] == "/etc/ca.pem"

    def test_docker_hub_repository_name(self):
        self.client.fetch_signature("app:v1")

        urls = [url for url, _ in self.notary.calls]
        assert f"{NOTARY}/v2/docker.io/library/app/_trust/tuf/root.json" in urls

    def test_explicit_notary_url(self):
        self.client.fetch_signature("registry.example.com/team/app:v1", notary_url="https://other.example.com/")

        assert self.notary.calls[0][0] == "https://other.example.com/v2/"

    def test_basic_auth_is_forwarded(self):
        self.client.fetch_signature("registry.example.com/team/app:v1", basic_auth="dXNlcjpwYXNz")

        role_calls = [headers for url, headers in self.notary.calls if '/_trust/' in url]
        assert role_calls
        assert all(h.get('Authorization') == "Basic dXNlcjpwYXNz" for h in role_calls)

    def test_bearer_token_flow(self):
        self.notary.challenge = BEARER_CHALLENGE

        summary = self.client.fetch_signature("registry.example.com/team/app:v1", basic_auth="dXNlcjpwYXNz")

        assert summary is not None
        assert self.notary.token_requests == [{
            'service': 'notary.example.com',
            'scope': 'repository:registry.example.com/team/app:pull,push'
        }]
        token_call = [headers for url, headers in self.notary.calls if url == REALM][0]
        assert token_call['Authorization'] == "Basic dXNlcjpwYXNz"

    def test_bearer_token_is_cached(self):
        self.notary.challenge = BEARER_CHALLENGE

        self.client.fetch_signature("registry.example.com/team/app:v1")
        self.client.fetch_signature("registry.example.com/team/app:v1")

        assert len(self.notary.token_requests) == 1

    def test_expired_token_is_refetched(self):
        self.notary.challenge = BEARER_CHALLENGE
        self.client.fetch_signature("registry.example.com/team/app:v1")
        for token in self.client._tokens.values():
            token.expires_at = 0.0

        self.client.fetch_signature("registry.example.com/team/app:v1")

        assert len(self.notary.token_requests) == 2

    def test_expired_tokens_are_pruned(self):
        self.notary.challenge = BEARER_CHALLENGE
        self.client.fetch_signature("registry.example.com/team/app:v1")
        for token in self.client._tokens.values():
            token.expires_at = 0.0

        self.client.fetch_signature("registry.example.com/team/other:v1")

        assert [key[1] for key in self.client._tokens] == ["registry.example.com/team/other"]

    def test_token_cache_is_bounded(self):
        with patch.object(client_module, 'MAX_CACHED_TOKENS', 2):
            for gun in ("a", "b", "c"):
                self.client.get_token(NOTARY, f"registry.example.com/{gun}")

        assert [key[1] for key in self.client._tokens] == ["registry.example.com/b", "registry.example.com/c"]

    def test_rolled_back_metadata_is_rejected(self):
        self.builder.version = 2
        self.notary.roles = self.builder.metadata()
        self.client.fetch_signature("registry.example.com/team/app:v1")

        self.builder.version = 1
        self.notary.roles = self.builder.metadata()

        with pytest.raises(TrustMetadataError, match="rolled back"):
            self.client.fetch_signature("registry.example.com/team/app:v1")

    def test_unauthorized_forces_reauthentication(self):
        self.notary.challenge = BEARER_CHALLENGE
        self.notary.unauthorized_once.add('targets')

        summary = self.client.fetch_signature("registry.example.com/team/app:v1")

        assert summary is not None
        assert len(self.notary.token_requests) == 2

    def test_basic_challenge_without_credentials(self):
        self.notary.challenge = 'Basic realm="notary"'

        with pytest.raises(TrustRetrievalError):
            self.client.fetch_signature("registry.example.com/team/app:v1")

    def test_challenge_without_realm(self):
        self.notary.challenge = 'Bearer service="notary.example.com"'

        with pytest.raises(TrustRetrievalError):
            self.client.fetch_signature("registry.example.com/team/app:v1")

    def test_no_trust_data(self):
        self.notary.roles = {}

        assert self.client.fetch_signature("registry.example.com/team/app:v1") is None

    def test_unsigned_tag(self):
        assert self.client.fetch_signature("registry.example.com/team/app:v2") is None

    def test_server_error(self):
        def failing(url, **kwargs):
            if url.endswith('/v2/'):
                return FakeResponse(200, {})
            return FakeResponse(500)

        self.session.get.side_effect = failing

        with pytest.raises(TrustRetrievalError) as excinfo:
            self.client.fetch_signature("registry.example.com/team/app:v1")
        assert excinfo.value.status_code == 500

    def test_network_error(self):
        self.session.get.side_effect = requests.ConnectionError("connection refused")

        with pytest.raises(TrustRetrievalError):
            self.client.fetch_signature("registry.example.com/team/app:v1")

    def test_invalid_json_metadata(self):
        def garbled(url, **kwargs):
            if url.endswith('/v2/'):
                return FakeResponse(200, {})
            return FakeResponse(200, None)

        self.session.get.side_effect = garbled

        with pytest.raises(TrustMetadataError):
            self.client.fetch_signature("registry.example.com/team/app:v1")
