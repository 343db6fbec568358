"""
Image Trust Webhook

Admission control for Kubernetes pods: every container image must be signed
through a notary trust server according to per-registry security policy, and
admitted images are pinned to their signed digests.
"""

__version__ = "1.0.0"
