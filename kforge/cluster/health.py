"""Cluster health report."""

from typing import Optional

from kforge.cluster.session import ClusterSession, OperationResult
from kforge.config import load_config
from kforge.errors import ReadinessError
from kforge.k8s.cluster import Cluster, print_component_statuses
from kforge.options import HealthOptions


def cluster_health(options: HealthOptions, session: Optional[ClusterSession] = None) -> OperationResult:
    """
    Print node readiness and etcd health.

    Raises:
        StageError: If not all nodes are ready or the cluster cannot be queried
    """
    if session is None:
        config = load_config(options.config_path, options.values_path)
        session = ClusterSession(config, require_platform=False)

    expected_nodes = session.meta.expected_nodes if session.platform is not None else 0

    with session.stage("health"):
        kubeconfig = session.kubeconfig(options.kubeconfig_path)
        cluster = Cluster(session.kubectl_factory(kubeconfig), expected_nodes)

        status = cluster.get_node_status()
        status.pretty_print(session.console)
        if not status.ready():
            raise ReadinessError("cluster is not completely ready")

        print_component_statuses(cluster.etcd_health(), session.console)

    return session.result("health")
