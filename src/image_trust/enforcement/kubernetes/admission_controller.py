#!/usr/bin/env python3
"""
Kubernetes Admission Controller for Image Trust Verification

Admission webhook that only admits pods whose container images are signed
according to the registry security policies, and pins admitted images to
their signed digests through a JSON patch.
"""

import os
import sys
import copy
import json
import base64
import logging
import argparse
import threading
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional

from flask import Flask, request, jsonify

from ...cluster.accessor import ClusterAccessor, StaticClusterAccessor
from ...cluster.kubernetes import KubernetesClusterAccessor, DEFAULT_POLICY_API_GROUP
from ...config.settings import Settings, CONFIG_PATH_ENV
from ...notary.client import TrustClient
from ...notary.errors import TrustError
from ...policy.whitelist import WhitelistCache, DEFAULT_WHITELIST_NAMESPACE
from ...utils.logger import setup_logging
from ..validator import ValidationEngine, CONTAINER_FIELDS

logger = logging.getLogger(__name__)

PATCH_PATHS = {
    "initContainers": "/spec/initContainers",
    "containers": "/spec/containers",
}


def build_image_patch(original: Dict[str, Any], mutated: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Build JSON patch operations for container images that changed.

    Args:
        original: Pod as received
        mutated: Pod after digest pinning

    Returns:
        List of ``replace`` operations
    """
    patches = []
    original_spec = original.get('spec') or {}
    mutated_spec = mutated.get('spec') or {}
    for field in CONTAINER_FIELDS:
        before = original_spec.get(field) or []
        after = mutated_spec.get(field) or []
        for index, (old, new) in enumerate(zip(before, after)):
            if old.get('image') != new.get('image'):
                patches.append({
                    "op": "replace",
                    "path": f"{PATCH_PATHS[field]}/{index}/image",
                    "value": new.get('image')
                })
    return patches


class CacheRefresher:
    """Background thread that refreshes the policy caches periodically."""

    def __init__(self, caches: List[Any], interval: float):
        self.caches = caches
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def refresh_all(self):
        """Refresh every cache; a failed refresh keeps that cache's old snapshot."""
        for cache in self.caches:
            try:
                cache.refresh()
            except Exception:
                logger.exception("Refreshing %s failed; keeping the previous snapshot", type(cache).__name__)

    def start(self):
        if self.interval <= 0 or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="cache-refresher", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval)
            self._thread = None

    def _run(self):
        while not self._stop.wait(self.interval):
            self.refresh_all()


class KubernetesAdmissionController:
    """Kubernetes admission webhook for image trust verification."""

    def __init__(self, engine: ValidationEngine):
        """
        Initialize the admission controller.

        Args:
            engine: Validation engine deciding on pods
        """
        self.engine = engine

        # Flask app for webhook
        self.app = Flask(__name__)
        self.app.add_url_rule('/health', 'health', self.health_check, methods=['GET'])
        self.app.add_url_rule('/validate', 'validate', self.validate_admission, methods=['POST'])
        self.app.add_url_rule('/mutate', 'mutate', self.mutate_admission, methods=['POST'])

    def health_check(self):
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "caches": {type(cache).__name__: cache.last_refreshed for cache in self.engine.caches}
        })

    def validate_admission(self):
        """Validating webhook endpoint: allow or deny, never patch."""
        return jsonify(self._review(mutate=False))

    def mutate_admission(self):
        """Mutating webhook endpoint: allow with a digest-pinning patch, or deny."""
        return jsonify(self._review(mutate=True))

    def _review(self, mutate: bool) -> Dict[str, Any]:
        admission_review = request.get_json(silent=True)
        if not admission_review or "request" not in admission_review:
            return self._create_admission_response(False, "Invalid admission review format")

        admission_request = admission_review["request"]
        uid = admission_request.get("uid")
        return self.review_request(admission_request, mutate, uid)

    def review_request(self, admission_request: Dict[str, Any], mutate: bool, uid: Optional[str] = None) -> Dict[str, Any]:
        """
        Decide on one admission request.

        Args:
            admission_request: ``request`` part of an AdmissionReview
            mutate: Attach a JSON patch pinning verified images
            uid: Request UID to echo

        Returns:
            AdmissionReview response document
        """
        pod = admission_request.get("object") or {}
        if pod.get("kind", "Pod") != "Pod":
            return self._create_admission_response(
                True, f"Resource type {pod.get('kind')} not subject to image verification", uid=uid)

        original = copy.deepcopy(pod)
        metadata = pod.setdefault("metadata", {})
        if not metadata.get("namespace") and admission_request.get("namespace"):
            metadata["namespace"] = admission_request["namespace"]

        try:
            is_valid, reason = self.engine.check_is_valid_and_add_digest(pod)
        except Exception as e:
            logger.exception("Image validation failed")
            return self._create_admission_response(False, f"Image validation error: {e}", uid=uid)

        if not is_valid:
            return self._create_admission_response(False, reason, uid=uid)

        patches = build_image_patch(original, pod) if mutate else []
        return self._create_admission_response(True, "All images are trusted", uid=uid, patches=patches)

    def _create_admission_response(self,
                                   allowed: bool,
                                   message: str,
                                   uid: str = None,
                                   patches: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Create standard Kubernetes admission response."""
        response = {
            "uid": uid,
            "allowed": allowed,
            "status": {
                "code": 200 if allowed else 403,
                "message": message
            }
        }
        if patches:
            response["patchType"] = "JSONPatch"
            response["patch"] = base64.b64encode(json.dumps(patches).encode()).decode()

        return {
            "apiVersion": "admission.k8s.io/v1",
            "kind": "AdmissionReview",
            "response": response
        }

    def run(self, host: str = "0.0.0.0", port: int = 8443,
            cert_path: Optional[str] = None, key_path: Optional[str] = None):
        """Run the admission controller webhook server."""
        if cert_path and key_path and os.path.exists(cert_path) and os.path.exists(key_path):
            logger.info("Running admission controller with TLS on port %d", port)
            self.app.run(host=host, port=port, threaded=True, ssl_context=(cert_path, key_path))
        else:
            logger.warning("Running admission controller without TLS on port %d", port)
            self.app.run(host=host, port=port, threaded=True)


MANIFEST_TEMPLATE = """\
apiVersion: v1
kind: ServiceAccount
metadata:
  name: {name}
  namespace: {namespace}
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRole
metadata:
  name: {name}
rules:
- apiGroups: [""]
  resources: ["secrets", "configmaps"]
  verbs: ["get", "list"]
- apiGroups: ["{policy_group}"]
  resources: ["registrysecuritypolicies", "signerpolicies", "signerkeys"]
  verbs: ["get", "list"]
---
apiVersion: rbac.authorization.k8s.io/v1
kind: ClusterRoleBinding
metadata:
  name: {name}
roleRef:
  apiGroup: rbac.authorization.k8s.io
  kind: ClusterRole
  name: {name}
subjects:
- kind: ServiceAccount
  name: {name}
  namespace: {namespace}
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {name}
  namespace: {namespace}
  labels:
    app: {name}
spec:
  replicas: 2
  selector:
    matchLabels:
      app: {name}
  template:
    metadata:
      labels:
        app: {name}
    spec:
      serviceAccountName: {name}
      containers:
      - name: webhook
        image: {image}
        ports:
        - containerPort: {port}
          name: webhook-api
        env:
        - name: TLS_CERT_PATH
          value: "/app/certs/tls.crt"
        - name: TLS_KEY_PATH
          value: "/app/certs/tls.key"
        - name: WHITELIST_NAMESPACE
          value: "{namespace}"
        - name: POLICY_API_GROUP
          value: "{policy_api_group}"
        volumeMounts:
        - name: webhook-certs
          mountPath: /app/certs
          readOnly: true
        livenessProbe:
          httpGet:
            path: /health
            port: {port}
            scheme: HTTPS
        readinessProbe:
          httpGet:
            path: /health
            port: {port}
            scheme: HTTPS
        resources:
          limits:
            cpu: 500m
            memory: 256Mi
          requests:
            cpu: 100m
            memory: 128Mi
      volumes:
      - name: webhook-certs
        secret:
          secretName: {name}-certs
---
apiVersion: v1
kind: Service
metadata:
  name: {name}
  namespace: {namespace}
spec:
  selector:
    app: {name}
  ports:
  - protocol: TCP
    port: 443
    targetPort: {port}
    name: webhook-api
---
apiVersion: admissionregistration.k8s.io/v1
kind: MutatingWebhookConfiguration
metadata:
  name: {name}
webhooks:
- name: {name}.{namespace}.svc
  clientConfig:
    service:
      name: {name}
      namespace: {namespace}
      path: "/mutate"
  rules:
  - operations: ["CREATE", "UPDATE"]
    apiGroups: [""]
    apiVersions: ["v1"]
    resources: ["pods"]
  namespaceSelector:
    matchExpressions:
    - key: kubernetes.io/metadata.name
      operator: NotIn
      values: ["{namespace}"]
  admissionReviewVersions: ["v1"]
  sideEffects: None
  failurePolicy: Fail
  timeoutSeconds: {timeout}
"""


def create_admission_controller_manifest(namespace: str = DEFAULT_WHITELIST_NAMESPACE,
                                         image: str = "image-trust-webhook:latest",
                                         name: str = "image-trust-webhook",
                                         port: int = 8443,
                                         policy_api_group: str = DEFAULT_POLICY_API_GROUP,
                                         timeout: int = 30) -> str:
    """
    Create Kubernetes manifests for deploying the webhook.

    The webhook's own namespace is excluded from admission so that its pods
    can always start.

    Args:
        namespace: Namespace the webhook runs in
        image: Webhook container image
        name: Name shared by the deployment, service, RBAC objects and webhook
        port: Container port the webhook listens on
        policy_api_group: ``group/version`` of the policy custom resources
        timeout: Admission timeout in seconds (at most 30)

    Returns:
        Multi-document YAML string
    """
    return MANIFEST_TEMPLATE.format(
        name=name,
        namespace=namespace,
        image=image,
        port=port,
        policy_api_group=policy_api_group,
        policy_group=policy_api_group.split('/')[0],
        timeout=min(int(timeout), 30)
    )


def create_accessor(settings: Settings) -> ClusterAccessor:
    """Build the cluster accessor selected by the settings."""
    if settings.cluster_backend == "static":
        return StaticClusterAccessor.from_file(settings.static_state_path)
    return KubernetesClusterAccessor.in_cluster(policy_api_group=settings.policy_api_group,
                                                timeout=settings.request_timeout)


def create_trust_client(settings: Settings) -> TrustClient:
    return TrustClient(default_notary_url=settings.default_notary_url,
                       timeout=settings.request_timeout,
                       verify_tls=settings.tls_verify,
                       check_expiry=settings.check_expiry)


def create_engine(settings: Settings, accessor: ClusterAccessor) -> ValidationEngine:
    """Wire the trust client, caches and validation engine."""
    trust_client = create_trust_client(settings)
    whitelist_cache = WhitelistCache(accessor,
                                     namespace=settings.whitelist_namespace,
                                     config_map_name=settings.whitelist_configmap,
                                     extra_images=settings.whitelist_images,
                                     extra_namespaces=settings.whitelist_namespaces)
    return ValidationEngine(accessor, trust_client, whitelist_cache=whitelist_cache)


def handle_serve(args, settings: Settings):
    """Run the webhook server."""
    logger.info("Starting image trust admission controller")
    logger.info("Cluster backend: %s", settings.cluster_backend)
    logger.info("Default notary server: %s", settings.default_notary_url)

    accessor = create_accessor(settings)
    engine = create_engine(settings, accessor)

    refresher = CacheRefresher(engine.caches, settings.refresh_interval)
    refresher.start()

    controller = KubernetesAdmissionController(engine)
    try:
        controller.run(host=args.host, port=settings.port,
                       cert_path=settings.tls_cert_path, key_path=settings.tls_key_path)
    finally:
        refresher.stop()


def handle_manifest(args, settings: Settings):
    """Print the deployment manifests."""
    print(create_admission_controller_manifest(namespace=args.namespace,
                                               image=args.image,
                                               port=settings.port,
                                               policy_api_group=settings.policy_api_group))


def handle_inspect(args, settings: Settings):
    """Print the trust summary of an image."""
    trust_client = create_trust_client(settings)
    try:
        summary = trust_client.fetch_signature(args.image, args.basic_auth or "", args.notary or "")
    except TrustError as e:
        logger.error("Unable to fetch trust data for %s: %s", args.image, e)
        sys.exit(2)

    if summary is None:
        print(f"Image '{args.image}' is not signed")
        sys.exit(1)
    print(summary.to_json())


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='image-trust-webhook',
        description='Admission webhook that only admits pods whose images are signed on a notary server.'
    )
    parser.add_argument(
        '--config',
        help=f'YAML configuration file (default: ${CONFIG_PATH_ENV})'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    serve_parser = subparsers.add_parser('serve', help='Run the webhook server (default)')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Address to listen on (default: 0.0.0.0)')
    serve_parser.set_defaults(func=handle_serve)

    manifest_parser = subparsers.add_parser('manifest', help='Print Kubernetes deployment manifests')
    manifest_parser.add_argument(
        '--namespace',
        default=DEFAULT_WHITELIST_NAMESPACE,
        help=f'Namespace to deploy into (default: {DEFAULT_WHITELIST_NAMESPACE})'
    )
    manifest_parser.add_argument(
        '--image',
        default='image-trust-webhook:latest',
        help='Webhook container image (default: image-trust-webhook:latest)'
    )
    manifest_parser.set_defaults(func=handle_manifest)

    inspect_parser = subparsers.add_parser('inspect', help='Print the trust summary of an image')
    inspect_parser.add_argument('image', help='Image reference, e.g. docker.io/library/alpine:3.18')
    inspect_parser.add_argument('--notary', help='Notary server URL (default: configured server)')
    inspect_parser.add_argument('--basic-auth', help='base64 user:password for the registry')
    inspect_parser.set_defaults(func=handle_inspect)

    args = parser.parse_args(argv)
    if not args.command:
        args.command = 'serve'
        args.host = '0.0.0.0'
        args.func = handle_serve

    settings = Settings(config_path=args.config)
    setup_logging(settings.log_level, settings.log_file)

    args.func(args, settings)


if __name__ == "__main__":
    main()
