"""Kubernetes access through kubectl."""

from kforge.k8s.cluster import Cluster, NodeStatus
from kforge.k8s.kubectl import Kubectl
from kforge.k8s.rollout import WorkloadKind

__all__ = ["Cluster", "Kubectl", "NodeStatus", "WorkloadKind"]
