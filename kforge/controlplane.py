"""
Control-plane upgrades.

Self-hosted control-plane components are Helm releases whose charts live in
the asset directory and whose values are rendered by Terraform into outputs
named ``<component>_values``. Upgrading walks the releases in the given
order; the order matters and must be preserved by the caller:

1. bootstrap secrets
2. pod checkpointer, before the API server
3. API server, before the other control-plane workloads
4. remaining control-plane workloads
5. networking
6. kubelet, last and only when requested
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml
from rich.console import Console

from kforge.errors import ExecutionError, HelmError, ReleaseError
from kforge.helm import Chart, HelmClient, load_chart
from kforge.terraform.executor import Executor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentRelease:
    name: str
    namespace: str
    wait: bool = False


def chart_dir(asset_dir: Path, release: ComponentRelease) -> Path:
    return Path(asset_dir) / "cluster-assets" / "charts" / release.namespace / release.name


def parse_values(raw: Any) -> Dict[str, Any]:
    """
    Parse a rendered values document.

    Terraform outputs the document as a YAML string; an already structured
    mapping is accepted unchanged.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"expected a YAML document, got {type(raw).__name__}")

    values = yaml.safe_load(raw) or {}
    if not isinstance(values, dict):
        raise ValueError("values document is not a mapping")
    return values


class ControlPlaneUpgrader:
    """Installs missing control-plane releases and upgrades all of them."""

    def __init__(
        self,
        executor: Executor,
        helm: HelmClient,
        asset_dir: Path,
        console: Optional[Console] = None,
    ):
        self.executor = executor
        self.helm = helm
        self.asset_dir = Path(asset_dir)
        self.console = console or Console()

    def load_chart(self, release: ComponentRelease) -> Chart:
        path = chart_dir(self.asset_dir, release)
        try:
            return load_chart(path)
        except HelmError as e:
            raise ReleaseError(release.name, f"loading chart from asset directory {path}: {e}") from e

    def load_values(self, release: ComponentRelease) -> Dict[str, Any]:
        key = f"{release.name}_values"
        try:
            raw = self.executor.output(key)
        except ExecutionError as e:
            raise ReleaseError(release.name, f"getting chart values from Terraform: {e}") from e

        try:
            return parse_values(raw)
        except (yaml.YAMLError, ValueError) as e:
            raise ReleaseError(release.name, f"parsing values from output '{key}': {e}") from e

    def upgrade_component(self, release: ComponentRelease) -> None:
        chart = self.load_chart(release)
        values = self.load_values(release)

        try:
            history = self.helm.history(release.name, release.namespace)
        except HelmError as e:
            raise ReleaseError(release.name, f"checking release history: {e}") from e

        if not history:
            self.console.print(f"Controlplane component '{release.name}' is missing, reinstalling...")
            try:
                self.helm.install(
                    release.name, chart, release.namespace, values,
                    atomic=True, create_namespace=True, wait=release.wait,
                )
            except HelmError as e:
                raise ReleaseError(release.name, f"installing controlplane component: {e}") from e

        # Also after a fresh install: covers releases whose resources were removed out of band.
        self.console.print(f"Ensuring controlplane component '{release.name}' is up to date...")
        try:
            self.helm.upgrade(release.name, chart, release.namespace, values, atomic=True, wait=release.wait)
        except HelmError as e:
            raise ReleaseError(release.name, f"updating controlplane component: {e}") from e

        logger.info(f"Controlplane component '{release.name}' is up to date")

    def upgrade(self, releases: Sequence[ComponentRelease]) -> None:
        """
        Upgrade releases strictly in order.

        Raises:
            ReleaseError: On the first failing release; later ones are not attempted
        """
        for release in releases:
            self.upgrade_component(release)
