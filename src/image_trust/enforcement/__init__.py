"""
Image Trust Webhook - Enforcement Module

This module provides the validation engine deciding on pods and the
Kubernetes admission webhook built on top of it.
"""

from .validator import ValidationEngine
from .kubernetes.admission_controller import KubernetesAdmissionController

__all__ = ['ValidationEngine', 'KubernetesAdmissionController']
