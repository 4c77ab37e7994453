"""
kforge - Kubernetes cluster lifecycle orchestrator

Provisions clusters through Terraform, verifies their readiness, keeps the
self-hosted control plane up to date and rolls out cluster components.
"""

__version__ = "0.1.0"


__all__ = ["KforgeConfig", "load_config", "__version__"]

from .config import KforgeConfig, load_config
