"""
Test suite for signer policy matching.
"""

from unittest.mock import MagicMock

import pytest

from image_trust.cluster import StaticClusterAccessor, ClusterLookupError, SIGNER_KEY
from image_trust.notary.summary import TrustSummary, SignedTag, TrustSigner
from image_trust.policy import SignerPolicy, SignerPolicyMatcher


def signer_key(name, *key_ids):
    return {'kind': SIGNER_KEY, 'metadata': {'name': name}, 'spec': {'targets': {k: {} for k in key_ids}}}


class TestSignerPolicyMatcher:
    """Test cases for SignerPolicyMatcher class."""

    def setup_method(self):
        self.accessor = StaticClusterAccessor([
            signer_key('alice', 'k-alice'),
            signer_key('admin', 'k-root'),
            signer_key('mallory', 'k-mallory'),
        ])
        self.matcher = SignerPolicyMatcher(self.accessor)
        self.summary = TrustSummary(
            "myreg.example.com/app",
            [SignedTag("v1", "aa" * 32, ["alice"])],
            [TrustSigner("bob", ["k-bob"]), TrustSigner("alice", ["k-alice"])],
            [TrustSigner("Root", ["k-root"]), TrustSigner("Repository", ["k-repo"])]
        )

    def test_no_policy_accepts_any_signature(self):
        assert self.matcher.matches(self.summary, [], "team-a")

    def test_policy_of_other_namespace_is_ignored(self):
        policies = [SignerPolicy("p", "team-b", ["mallory"])]

        assert self.matcher.matches(self.summary, policies, "team-a")

    def test_empty_summary_is_rejected(self):
        empty = TrustSummary("myreg.example.com/app", [], [], [])

        assert not self.matcher.matches(empty, [], "team-a")
        assert not self.matcher.matches(None, [], "team-a")

    def test_delegated_signer_key_matches(self):
        policies = [SignerPolicy("p", "team-a", ["alice"])]

        assert self.matcher.matches(self.summary, policies, "team-a")

    def test_administrative_key_matches(self):
        policies = [SignerPolicy("p", "team-a", ["admin"])]

        assert self.matcher.matches(self.summary, policies, "team-a")

    def test_unauthorized_signer(self):
        policies = [SignerPolicy("p", "team-a", ["mallory"])]

        assert not self.matcher.matches(self.summary, policies, "team-a")

    def test_signer_that_did_not_sign_the_row(self):
        self.accessor.add(signer_key('bob', 'k-bob'))
        policies = [SignerPolicy("p", "team-a", ["bob"])]

        assert not self.matcher.matches(self.summary, policies, "team-a")

    def test_unknown_signer(self):
        policies = [SignerPolicy("p", "team-a", ["nobody", "alice"])]

        assert self.matcher.matches(self.summary, policies, "team-a")

    def test_signer_keys_are_looked_up_every_time(self):
        policies = [SignerPolicy("p", "team-a", ["alice"])]
        assert self.matcher.matches(self.summary, policies, "team-a")

        self.accessor.add(signer_key('alice', 'k-rotated'))

        assert not self.matcher.matches(self.summary, policies, "team-a")

    def test_lookup_error_propagates(self):
        accessor = MagicMock()
        accessor.get.side_effect = ClusterLookupError("api down", kind=SIGNER_KEY, name="alice")
        matcher = SignerPolicyMatcher(accessor)

        with pytest.raises(ClusterLookupError):
            matcher.matches(self.summary, [SignerPolicy("p", "team-a", ["alice"])], "team-a")
