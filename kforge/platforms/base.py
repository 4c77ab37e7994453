"""
Base classes for infrastructure platforms.

A platform renders its Terraform definition into the asset directory and
drives the executor to apply or destroy it. Platforms that need extra work
after a successful apply also implement PostApplyHook; the orchestrator
resolves that capability once through post_apply_hook_of().
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from kforge.certificates import RotationTarget
from kforge.controlplane import ComponentRelease
from kforge.k8s.rollout import WorkloadKind
from kforge.terraform.executor import Executor
from kforge.terraform.signals import CancellationToken

KUBE_SYSTEM = "kube-system"


def common_control_plane_charts(include_kubelet: bool) -> List[ComponentRelease]:
    """Self-hosted control-plane releases in upgrade order."""
    charts = [
        ComponentRelease("bootstrap-secrets", KUBE_SYSTEM),
        ComponentRelease("pod-checkpointer", KUBE_SYSTEM),
        ComponentRelease("kube-apiserver", KUBE_SYSTEM),
        ComponentRelease("kubernetes", KUBE_SYSTEM),
        ComponentRelease("calico", KUBE_SYSTEM),
    ]
    if include_kubelet:
        charts.append(ComponentRelease("kubelet", KUBE_SYSTEM))
    return charts


def common_daemonsets(include_kubelet: bool) -> List[RotationTarget]:
    names = ["kube-apiserver", "pod-checkpointer", "calico-node", "kube-proxy"]
    if include_kubelet:
        names.append("kubelet")
    return [RotationTarget(KUBE_SYSTEM, name, WorkloadKind.DAEMONSET) for name in names]


def common_deployments() -> List[RotationTarget]:
    names = ["kube-controller-manager", "kube-scheduler", "coredns", "calico-kube-controllers"]
    return [RotationTarget(KUBE_SYSTEM, name, WorkloadKind.DEPLOYMENT) for name in names]


@dataclass(frozen=True)
class PlatformMeta:
    asset_dir: Path
    expected_nodes: int
    managed: bool = False
    control_plane_charts: List[ComponentRelease] = field(default_factory=list)
    controller_module_name: str = ""
    daemonsets: List[RotationTarget] = field(default_factory=list)
    deployments: List[RotationTarget] = field(default_factory=list)


class Platform(ABC):
    """Infrastructure platform a cluster runs on."""

    name: str = ""

    @abstractmethod
    def load_config(self, config: Dict[str, Any]) -> None:
        """
        Load and validate the platform block of the cluster configuration.

        Raises:
            ConfigError: If the configuration is invalid
        """
        pass

    @abstractmethod
    def meta(self) -> PlatformMeta:
        pass

    @abstractmethod
    def initialize(self, executor: Executor) -> None:
        """Render the Terraform definition into the executor's working directory."""
        pass

    @abstractmethod
    def apply(self, executor: Executor) -> None:
        pass

    @abstractmethod
    def apply_without_parallel(self, executor: Executor) -> None:
        """Apply with a parallelism of one, so failures stop as early as possible."""
        pass

    @abstractmethod
    def destroy(self, executor: Executor) -> None:
        pass


class PostApplyHook(ABC):
    """Optional platform capability run after the cluster has been verified."""

    @abstractmethod
    def post_apply_hook(self, kubeconfig: Path, cancellation: Optional[CancellationToken] = None) -> None:
        pass


def post_apply_hook_of(platform: Platform) -> Optional[PostApplyHook]:
    return platform if isinstance(platform, PostApplyHook) else None
