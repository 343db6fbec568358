"""
Kubernetes Enforcement Module

Provides the admission webhook that ensures only pods with signed images
are admitted to the cluster.
"""

from .admission_controller import KubernetesAdmissionController, CacheRefresher, build_image_patch

__all__ = ['KubernetesAdmissionController', 'CacheRefresher', 'build_image_patch']
