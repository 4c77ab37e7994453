"""Base class for cluster components."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict


@dataclass(frozen=True)
class ComponentMetadata:
    name: str
    namespace: str
    # Wait for all resources to become ready on install and upgrade.
    wait: bool = True


class Component(ABC):
    """
    A cluster add-on installed after the cluster is up.

    Lifecycle:
    - load_config(): validate the component's configuration block
    - render_manifests(): produce the Kubernetes manifests without installing
    - install(): install or upgrade on a cluster
    - uninstall(): remove from a cluster
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def load_config(self, config: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def render_manifests(self) -> Dict[str, str]:
        """Return manifests keyed by file name."""
        pass

    @abstractmethod
    def install(self, kubeconfig: Path) -> None:
        pass

    @abstractmethod
    def uninstall(self, kubeconfig: Path) -> None:
        pass

    @abstractmethod
    def metadata(self) -> ComponentMetadata:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
