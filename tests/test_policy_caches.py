"""
Test suite for policy models and snapshot caches.
"""

import threading
from unittest.mock import MagicMock

import pytest

from image_trust.cluster import (StaticClusterAccessor, ClusterLookupError, CONFIG_MAP,
                                 REGISTRY_SECURITY_POLICY, SIGNER_POLICY)
from image_trust.policy import (RegistrySecurityPolicy, SignerKey, WhiteList, RegistryPolicyCache,
                                SignerPolicyCache, WhitelistCache)


def registry_policy(name, namespace, *registries):
    return {
        'kind': REGISTRY_SECURITY_POLICY,
        'metadata': {'name': name, 'namespace': namespace},
        'spec': {'registries': list(registries)}
    }


def whitelist_config_map(images="", namespaces=""):
    return {
        'kind': CONFIG_MAP,
        'metadata': {'name': 'image-trust-whitelist', 'namespace': 'image-trust-system'},
        'data': {'whitelist-images': images, 'whitelist-namespaces': namespaces}
    }


class TestPolicyModels:
    """Test cases for policy record types."""

    def test_registry_policy_from_resource(self):
        policies = RegistrySecurityPolicy.from_resource(registry_policy(
            'p', 'team-a',
            {'registry': 'https://myreg.example.com/', 'notary': 'https://notary.example.com', 'signCheck': True},
            {'registry': 'other.example.com'},
            {'notary': 'https://ignored'}
        ))

        assert [p.registry for p in policies] == ['myreg.example.com', 'other.example.com']
        assert policies[0].sign_check
        assert policies[0].namespace == 'team-a'
        assert not policies[1].sign_check
        assert policies[1].notary == ""

    @pytest.mark.parametrize("value,expected", [
        ("false", False), ("False", False), ("no", False), ("0", False), ("", False),
        ("true", True), ("yes", True), (1, True), (0, False), ("enabled", True),
    ])
    def test_sign_check_written_as_string(self, value, expected):
        policies = RegistrySecurityPolicy.from_resource(registry_policy(
            'p', 'team-a', {'registry': 'myreg.example.com', 'signCheck': value}))

        assert policies[0].sign_check is expected

    def test_signer_key_forms(self):
        as_map = SignerKey.from_resource({'metadata': {'name': 'alice'}, 'spec': {'targets': {'k1': {}, 'k2': {}}}})
        as_list = SignerKey.from_resource({'metadata': {'name': 'bob'}, 'spec': {'targets': [{'id': 'k3'}, 'k4']}})

        assert as_map.target_key_ids == ['k1', 'k2']
        assert as_list.target_key_ids == ['k3', 'k4']

    def test_whitelist_from_config_map(self):
        whitelist = WhiteList.from_config_map(whitelist_config_map(
            images='["docker.io/library/busybox", "quay.io/"]',
            namespaces="kube-system\nmonitoring, logging"
        ))

        assert whitelist.by_images == ['docker.io/library/busybox', 'quay.io/']
        assert whitelist.by_namespaces == ['kube-system', 'monitoring', 'logging']
        assert WhiteList.from_config_map(None).to_dict() == {'by_images': [], 'by_namespaces': []}

    def test_whitelist_invalid_json(self):
        with pytest.raises(ValueError):
            WhiteList.from_config_map(whitelist_config_map(images='["unterminated'))


class TestRegistryPolicyCache:
    """Test cases for RegistryPolicyCache class."""

    def setup_method(self):
        self.accessor = StaticClusterAccessor([
            registry_policy('cluster', '', {'registry': 'myreg.example.com', 'notary': 'https://n1', 'signCheck': True}),
            registry_policy('team-a', 'team-a', {'registry': 'myreg.example.com', 'signCheck': False}),
            registry_policy('hub', 'team-a', {'registry': 'docker.io', 'notary': 'https://notary.docker.io',
                                              'signCheck': True}),
        ])
        self.cache = RegistryPolicyCache(self.accessor)

    def test_namespace_policy_wins(self):
        found, policy = self.cache.match('myreg.example.com', 'team-a')

        assert found
        assert policy.namespace == 'team-a'
        assert not policy.sign_check

    def test_cluster_wide_fallback(self):
        found, policy = self.cache.match('myreg.example.com', 'team-b')

        assert found
        assert policy.namespace is None
        assert policy.notary == 'https://n1'

    def test_unknown_registry(self):
        assert self.cache.match('unknown.example.com', 'team-a') == (False, None)
        assert self.cache.match('docker.io', 'team-b') == (False, None)

    def test_docker_hub_aliases(self):
        found, policy = self.cache.match('index.docker.io', 'team-a')

        assert found
        assert policy.registry == 'docker.io'

    def test_duplicate_keeps_first(self):
        self.accessor.add(registry_policy('z-late', 'team-a', {'registry': 'myreg.example.com', 'signCheck': True}))
        self.cache.refresh()

        _, policy = self.cache.match('myreg.example.com', 'team-a')
        assert not policy.sign_check

    def test_refresh_swaps_snapshot(self):
        old_snapshot = self.cache.snapshot
        self.accessor.add(registry_policy('new', 'team-c', {'registry': 'new.example.com'}))

        assert self.cache.match('new.example.com', 'team-c') == (False, None)
        self.cache.refresh()

        assert self.cache.match('new.example.com', 'team-c')[0]
        assert self.cache.snapshot is not old_snapshot
        assert 'new.example.com' not in old_snapshot

    def test_failed_refresh_keeps_snapshot(self):
        accessor = MagicMock()
        accessor.list.return_value = [registry_policy('p', 'ns', {'registry': 'myreg.example.com'})]
        cache = RegistryPolicyCache(accessor)
        accessor.list.side_effect = ClusterLookupError("api down")

        with pytest.raises(ClusterLookupError):
            cache.refresh()

        assert cache.match('myreg.example.com', 'ns')[0]

    def test_concurrent_reads_during_refresh(self):
        errors = []

        def reader():
            for _ in range(200):
                found, _ = self.cache.match('myreg.example.com', 'team-b')
                if not found:
                    errors.append('missing')

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for _ in range(20):
            self.cache.refresh()
        for thread in threads:
            thread.join()

        assert errors == []


class TestWhitelistCache:
    """Test cases for WhitelistCache class."""

    def setup_method(self):
        self.accessor = StaticClusterAccessor([
            whitelist_config_map(images="docker.io/busybox\nquay.io/prometheus/",
                                 namespaces="kube-system")
        ])
        self.cache = WhitelistCache(self.accessor, extra_namespaces=["image-trust-system"])

    def test_image_substring_match(self):
        assert self.cache.is_image_whitelisted("busybox")
        assert self.cache.is_image_whitelisted("quay.io/prometheus/node-exporter:v1")
        assert not self.cache.is_image_whitelisted("nginx")

    def test_image_match_ignores_digest(self):
        assert self.cache.is_image_whitelisted("busybox@sha256:" + "a" * 64)

    def test_namespace_exact_match(self):
        assert self.cache.is_namespace_whitelisted("kube-system")
        assert self.cache.is_namespace_whitelisted("image-trust-system")
        assert not self.cache.is_namespace_whitelisted("kube")

    def test_missing_config_map(self):
        cache = WhitelistCache(StaticClusterAccessor(), extra_images=["myreg.example.com/base/"])

        assert cache.is_image_whitelisted("myreg.example.com/base/python:3")
        assert not cache.is_namespace_whitelisted("kube-system")


class TestSignerPolicyCache:
    """Test cases for SignerPolicyCache class."""

    def test_policies_by_namespace(self):
        accessor = StaticClusterAccessor([
            {'kind': SIGNER_POLICY, 'metadata': {'name': 'p1', 'namespace': 'team-a'}, 'spec': {'signers': ['alice']}},
            {'kind': SIGNER_POLICY, 'metadata': {'name': 'p2', 'namespace': 'team-a'}, 'spec': {'signers': ['bob']}},
        ])

        cache = SignerPolicyCache(accessor)

        assert [p.name for p in cache.policies_for('team-a')] == ['p1', 'p2']
        assert cache.policies_for('team-b') == ()
