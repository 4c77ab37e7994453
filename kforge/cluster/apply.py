"""
Cluster apply.

Stages, each gated on the previous one succeeding:

    initialize -> check-existence -> [confirm] -> apply-infrastructure
    -> verify-cluster -> normalize-namespaces -> [upgrade-controlplane]
    -> [post-apply-hook] -> [apply-components]

A fresh install and a reconciling apply share this path; only the
confirmation gate and the control-plane upgrade depend on whether the
cluster already existed.
"""

import logging
from typing import List, Optional

from kforge.cluster.components import apply_components
from kforge.cluster.session import ClusterSession, OperationResult
from kforge.config import load_config
from kforge.controlplane import ComponentRelease, ControlPlaneUpgrader
from kforge.k8s.cluster import Cluster
from kforge.k8s.kubectl import Kubectl
from kforge.options import ApplyOptions
from kforge.platforms.base import KUBE_SYSTEM
from kforge.utils import ask_for_confirmation

logger = logging.getLogger(__name__)

NAMESPACE_LABEL = "kforge.io/name"
KUBELET_CHART = ComponentRelease("kubelet", KUBE_SYSTEM)


def normalize_namespaces(kubectl: Kubectl) -> int:
    """
    Label every namespace with its own name.

    Returns:
        Number of namespaces that needed the label
    """
    updated = 0
    for namespace in kubectl.list_namespaces():
        metadata = namespace.get("metadata", {})
        name = metadata.get("name")
        labels = metadata.get("labels") or {}
        if not name or labels.get(NAMESPACE_LABEL) == name:
            continue
        kubectl.label("namespace", name, {NAMESPACE_LABEL: name})
        updated += 1
    return updated


def control_plane_charts(session: ClusterSession, upgrade_kubelets: bool) -> List[ComponentRelease]:
    """Platform charts without the kubelet, which is appended last only on request."""
    charts = [c for c in session.meta.control_plane_charts if c.name != KUBELET_CHART.name]
    if upgrade_kubelets:
        charts.append(KUBELET_CHART)
    return charts


class ApplyOrchestrator:
    """Creates or reconciles a cluster."""

    def __init__(self, session: ClusterSession, options: ApplyOptions):
        self.session = session
        self.options = options

    def run(self) -> OperationResult:
        session = self.session
        options = self.options

        with session.stage("initialize"):
            executor = session.initialize()

        with session.stage("check-existence"):
            exists = session.cluster_exists()

        if exists and not options.confirm:
            with session.stage("confirm"):
                executor.plan()
                confirmed = ask_for_confirmation(
                    "Do you want to proceed with cluster apply?", session.input_fn
                )
            if not confirmed:
                logger.info("Cluster apply cancelled")
                session.console.print("Cluster apply cancelled")
                return session.result("apply", cancelled=True, cluster_existed=exists)

        with session.stage("apply-infrastructure"):
            session.platform.apply(executor)
        session.console.print(f"\nYour configurations are stored in {session.asset_dir}")

        with session.stage("verify-cluster"):
            kubeconfig = session.kubeconfig()
            kubectl = session.kubectl_factory(kubeconfig)
            cluster = Cluster(kubectl, session.meta.expected_nodes)
            session.verifier_factory(
                cluster, cancellation=session.cancellation, console=session.console
            ).verify()

        with session.stage("normalize-namespaces"):
            normalize_namespaces(kubectl)

        if exists and not session.meta.managed:
            with session.stage("upgrade-controlplane"):
                session.console.print("\nEnsuring that cluster controlplane is up to date.")
                upgrader = ControlPlaneUpgrader(
                    executor, session.helm_factory(kubeconfig), session.asset_dir, session.console
                )
                upgrader.upgrade(control_plane_charts(session, options.upgrade_kubelets))

        if session.post_apply_hook is not None:
            with session.stage("post-apply-hook"):
                session.post_apply_hook.post_apply_hook(kubeconfig, cancellation=session.cancellation)

        if not options.skip_components:
            with session.stage("apply-components"):
                logger.info("Applying component configuration")
                apply_components(session, kubeconfig, session.select_component_names())

        return session.result("apply", cluster_existed=exists)


def apply_cluster(options: ApplyOptions, session: Optional[ClusterSession] = None) -> OperationResult:
    """Load configuration from the options' paths, unless a session is given, and apply."""
    if session is None:
        config = load_config(options.config_path, options.values_path)
        session = ClusterSession(config, verbose=options.verbose)
    return ApplyOrchestrator(session, options).run()
