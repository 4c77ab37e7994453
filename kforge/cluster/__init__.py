"""Cluster lifecycle operations."""

from kforge.cluster.apply import apply_cluster
from kforge.cluster.components import component_apply, component_delete, component_render_manifest
from kforge.cluster.destroy import destroy_cluster
from kforge.cluster.health import cluster_health
from kforge.cluster.rotate import rotate_certificates
from kforge.cluster.session import ClusterSession, OperationResult, StageResult

__all__ = [
    "ClusterSession",
    "OperationResult",
    "StageResult",
    "apply_cluster",
    "cluster_health",
    "component_apply",
    "component_delete",
    "component_render_manifest",
    "destroy_cluster",
    "rotate_certificates",
]
