#!/usr/bin/env python3
"""
Basic Usage Example for the Image Trust Webhook

This example demonstrates the core functionality:
1. Parsing image references
2. Loading cluster policy from a static state file
3. Validating pods and pinning signed images to their digests
4. Inspecting the trust summary of a signed Docker Hub image

Install the package first (pip install -e .). The last two steps talk to
notary.docker.io and need network access.
"""

import json
from pathlib import Path

from image_trust.cluster import StaticClusterAccessor
from image_trust.enforcement import ValidationEngine
from image_trust.images import ImageReference
from image_trust.notary import TrustClient, TrustError
from image_trust.utils import setup_logging

STATE_FILE = Path(__file__).parent / "cluster-state.yaml"


def make_pod(name, namespace, *images):
    return {
        'kind': 'Pod',
        'metadata': {'name': name, 'namespace': namespace},
        'spec': {'containers': [{'name': f"c{i}", 'image': image} for i, image in enumerate(images)]}
    }


def demonstrate_parsing():
    """Show how image references are normalized."""
    print("🔍 Parsing image references...")

    for image in ("nginx", "team/app:1.0", "registry.internal.example.com:5000/tools/cli:v2"):
        ref = ImageReference.parse(image)
        print(f"  {image:50} -> {ref.to_string()}  (notary name: {ref.name_with_host})")


def demonstrate_validation(engine):
    """Validate a few pods against the policies in the state file."""
    print("\n🛡️  Validating pods...")

    pods = [
        make_pod("system", "kube-system", "unknown.example.com/agent:1"),
        make_pod("tools", "default", "busybox:1.36", "registry.internal.example.com/tools/cli:v2"),
        make_pod("rogue", "default", "unknown.example.com/miner:latest"),
        make_pod("web", "default", "docker.io/library/alpine:3.18"),
    ]

    for pod in pods:
        name = pod['metadata']['name']
        try:
            is_valid, reason = engine.check_is_valid_and_add_digest(pod)
        except TrustError as e:
            print(f"  ⚠️  {name}: trust data unavailable: {e}")
            continue

        if is_valid:
            images = [c['image'] for c in pod['spec']['containers']]
            print(f"  ✅ {name}: admitted with images {images}")
        else:
            print(f"  ❌ {name}: rejected: {reason}")


def demonstrate_trust_summary(trust_client):
    """Print the trust summary of a signed official image."""
    print("\n📋 Trust summary of docker.io/library/alpine:3.18...")

    try:
        summary = trust_client.fetch_signature("alpine:3.18")
    except TrustError as e:
        print(f"  ⚠️  Unable to fetch trust data: {e}")
        return

    if summary is None:
        print("  Image is not signed")
        return
    print(json.dumps(summary.to_dict(), indent=2))


def main():
    """Run all demonstrations."""
    setup_logging("WARNING")

    print("🚀 Image Trust Webhook - Basic Usage Example")
    print("=" * 60)

    accessor = StaticClusterAccessor.from_file(str(STATE_FILE))
    trust_client = TrustClient(timeout=10)
    engine = ValidationEngine(accessor, trust_client)

    demonstrate_parsing()
    demonstrate_validation(engine)
    demonstrate_trust_summary(trust_client)

    print("\n🎉 Example completed!")


if __name__ == "__main__":
    main()
