"""
Test suite for the Kubernetes admission webhook.
"""

import json
import base64
from unittest.mock import MagicMock, patch

import pytest
import yaml

from image_trust.enforcement.kubernetes import admission_controller
from image_trust.enforcement.kubernetes.admission_controller import (KubernetesAdmissionController,
                                                                      CacheRefresher, build_image_patch,
                                                                      create_admission_controller_manifest)
from image_trust.notary.errors import TrustRetrievalError
from image_trust.notary.summary import TrustSummary, SignedTag

DIGEST = "abc123" + "0" * 58


def admission_review(pod, namespace="team-a", uid="req-1"):
    return {
        'apiVersion': 'admission.k8s.io/v1',
        'kind': 'AdmissionReview',
        'request': {'uid': uid, 'namespace': namespace, 'object': pod}
    }


def pod_with(image, init_image=None):
    spec = {'containers': [{'name': 'app', 'image': image}]}
    if init_image:
        spec['initContainers'] = [{'name': 'init', 'image': init_image}]
    return {'kind': 'Pod', 'metadata': {'name': 'web'}, 'spec': spec}


def pin_images(pod):
    for container in pod['spec']['containers']:
        container['image'] = f"{container['image']}@sha256:{DIGEST}"
    return True, ""


class TestBuildImagePatch:
    """Test cases for build_image_patch."""

    def test_changed_images_only(self):
        original = pod_with("registry.example.com/app:v1", init_image="busybox")
        mutated = pod_with(f"registry.example.com/app:v1@sha256:{DIGEST}", init_image="busybox")

        patches = build_image_patch(original, mutated)

        assert patches == [{
            'op': 'replace',
            'path': '/spec/containers/0/image',
            'value': f"registry.example.com/app:v1@sha256:{DIGEST}"
        }]

    def test_init_container_path(self):
        original = pod_with("a", init_image="b")
        mutated = pod_with("a", init_image="c")

        assert build_image_patch(original, mutated)[0]['path'] == '/spec/initContainers/0/image'

    def test_no_changes(self):
        pod = pod_with("a")

        assert build_image_patch(pod, pod) == []


class TestKubernetesAdmissionController:
    """Test cases for KubernetesAdmissionController class."""

    def setup_method(self):
        self.engine = MagicMock()
        self.engine.caches = []
        self.engine.check_is_valid_and_add_digest.return_value = (True, "")
        self.controller = KubernetesAdmissionController(self.engine)
        self.client = self.controller.app.test_client()

    def post(self, path, body):
        response = self.client.post(path, data=json.dumps(body), content_type='application/json')
        assert response.status_code == 200
        return response.get_json()

    def test_health(self):
        response = self.client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_allowed_pod_is_patched(self):
        self.engine.check_is_valid_and_add_digest.side_effect = pin_images

        result = self.post('/mutate', admission_review(pod_with("registry.example.com/app:v1")))

        response = result['response']
        assert result['kind'] == 'AdmissionReview'
        assert response['uid'] == 'req-1'
        assert response['allowed'] is True
        assert response['patchType'] == 'JSONPatch'
        patches = json.loads(base64.b64decode(response['patch']))
        assert patches[0]['value'] == f"registry.example.com/app:v1@sha256:{DIGEST}"

    def test_validate_never_patches(self):
        self.engine.check_is_valid_and_add_digest.side_effect = pin_images

        response = self.post('/validate', admission_review(pod_with("registry.example.com/app:v1")))['response']

        assert response['allowed'] is True
        assert 'patch' not in response

    def test_denied_pod(self):
        self.engine.check_is_valid_and_add_digest.return_value = (False, "Image 'x' is not signed")

        response = self.post('/mutate', admission_review(pod_with("x")))['response']

        assert response['allowed'] is False
        assert response['status']['code'] == 403
        assert response['status']['message'] == "Image 'x' is not signed"
        assert 'patch' not in response

    def test_namespace_taken_from_request(self):
        self.post('/mutate', admission_review(pod_with("registry.example.com/app:v1"), namespace="team-b"))

        pod = self.engine.check_is_valid_and_add_digest.call_args[0][0]
        assert pod['metadata']['namespace'] == "team-b"

    def test_errors_fail_closed(self):
        self.engine.check_is_valid_and_add_digest.side_effect = RuntimeError("notary unreachable")

        response = self.post('/mutate', admission_review(pod_with("registry.example.com/app:v1")))['response']

        assert response['allowed'] is False
        assert "notary unreachable" in response['status']['message']

    def test_non_pod_resources_are_allowed(self):
        response = self.post('/mutate', admission_review({'kind': 'Deployment', 'metadata': {'name': 'web'}}))

        assert response['response']['allowed'] is True
        self.engine.check_is_valid_and_add_digest.assert_not_called()

    def test_invalid_review(self):
        response = self.post('/validate', {'kind': 'AdmissionReview'})['response']

        assert response['allowed'] is False
        assert response['uid'] is None


class TestCacheRefresher:
    """Test cases for CacheRefresher class."""

    def test_refresh_all_continues_after_failure(self):
        failing = MagicMock()
        failing.refresh.side_effect = RuntimeError("api down")
        healthy = MagicMock()

        CacheRefresher([failing, healthy], interval=60).refresh_all()

        healthy.refresh.assert_called_once()

    def test_disabled_when_interval_is_zero(self):
        refresher = CacheRefresher([MagicMock()], interval=0)

        refresher.start()

        assert refresher._thread is None
        refresher.stop()


class TestManifest:
    """Test cases for create_admission_controller_manifest."""

    def test_manifest_documents(self):
        documents = list(yaml.safe_load_all(create_admission_controller_manifest(
            namespace="trust", image="example.com/webhook:1.0", policy_api_group="policy.example.com/v1")))

        kinds = [doc['kind'] for doc in documents]
        assert kinds == ['ServiceAccount', 'ClusterRole', 'ClusterRoleBinding', 'Deployment', 'Service',
                         'MutatingWebhookConfiguration']
        deployment = documents[3]
        assert deployment['metadata']['namespace'] == "trust"
        assert deployment['spec']['template']['spec']['containers'][0]['image'] == "example.com/webhook:1.0"
        assert documents[1]['rules'][1]['apiGroups'] == ["policy.example.com"]
        webhook = documents[5]['webhooks'][0]
        assert webhook['clientConfig']['service']['path'] == "/mutate"
        assert webhook['failurePolicy'] == "Fail"

    def test_timeout_is_capped(self):
        documents = list(yaml.safe_load_all(create_admission_controller_manifest(timeout=120)))

        assert documents[5]['webhooks'][0]['timeoutSeconds'] == 30


class TestCommandLine:
    """Test cases for the command line entry point."""

    def setup_method(self):
        self.trust_client = MagicMock()
        self.patcher = patch.object(admission_controller, 'create_trust_client', return_value=self.trust_client)
        self.patcher.start()
        self.logging_patcher = patch.object(admission_controller, 'setup_logging')
        self.logging_patcher.start()
        self.env = patch.dict('os.environ', {}, clear=True)
        self.env.start()

    def teardown_method(self):
        self.patcher.stop()
        self.logging_patcher.stop()
        self.env.stop()

    def test_manifest_command(self, capsys):
        admission_controller.main(['manifest', '--namespace', 'trust'])

        output = capsys.readouterr().out
        assert "namespace: trust" in output

    def test_inspect_signed_image(self, capsys):
        self.trust_client.fetch_signature.return_value = TrustSummary(
            "docker.io/library/alpine", [SignedTag("3.18", "aa" * 32, ["Repo Admin"])], [], [])

        admission_controller.main(['inspect', 'alpine:3.18'])

        data = json.loads(capsys.readouterr().out)
        assert data['signed_tags'][0]['digest'] == "aa" * 32
        self.trust_client.fetch_signature.assert_called_once_with('alpine:3.18', "", "")

    def test_inspect_unsigned_image(self):
        self.trust_client.fetch_signature.return_value = None

        with pytest.raises(SystemExit) as excinfo:
            admission_controller.main(['inspect', 'alpine:3.18'])
        assert excinfo.value.code == 1

    def test_inspect_trust_error(self):
        self.trust_client.fetch_signature.side_effect = TrustRetrievalError("unreachable")

        with pytest.raises(SystemExit) as excinfo:
            admission_controller.main(['inspect', 'alpine:3.18', '--notary', 'https://notary.example.com'])
        assert excinfo.value.code == 2
