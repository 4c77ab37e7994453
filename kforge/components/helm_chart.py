"""Component installed from a local Helm chart directory."""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from kforge.components.base import Component, ComponentMetadata
from kforge.errors import ConfigError, HelmError, ReleaseError
from kforge.helm import Chart, HelmClient, load_chart, split_manifests

logger = logging.getLogger(__name__)


class HelmChartComponent(Component):
    """
    Configuration keys:

    - chart: path to the chart directory (required)
    - namespace: target namespace, defaults to the component name
    - values: mapping passed to the chart
    - wait: wait for resources on install/upgrade, defaults to true
    """

    type_name = "helm-chart"

    def __init__(self, name: str, helm_factory: Callable[[Optional[Path]], HelmClient] = HelmClient):
        super().__init__(name)
        self.helm_factory = helm_factory
        self.chart_path: Optional[Path] = None
        self.namespace = name
        self.values: Dict[str, Any] = {}
        self.wait = True

    def load_config(self, config: Dict[str, Any]) -> None:
        chart = config.get("chart")
        if not chart:
            raise ConfigError(f"component '{self.name}': missing 'chart'")

        values = config.get("values", {})
        if not isinstance(values, dict):
            raise ConfigError(f"component '{self.name}': 'values' must be a mapping")

        self.chart_path = Path(chart).expanduser()
        self.namespace = config.get("namespace", self.name)
        self.values = values
        self.wait = bool(config.get("wait", True))

    def metadata(self) -> ComponentMetadata:
        return ComponentMetadata(name=self.name, namespace=self.namespace, wait=self.wait)

    def _chart(self) -> Chart:
        if self.chart_path is None:
            raise ConfigError(f"component '{self.name}': configuration not loaded")
        try:
            return load_chart(self.chart_path)
        except HelmError as e:
            raise ReleaseError(self.name, str(e)) from e

    def render_manifests(self) -> Dict[str, str]:
        chart = self._chart()
        try:
            rendered = self.helm_factory(None).template(self.name, chart, self.namespace, self.values)
        except HelmError as e:
            raise ReleaseError(self.name, f"rendering manifests: {e}") from e
        return split_manifests(rendered)

    def install(self, kubeconfig: Path) -> None:
        chart = self._chart()
        meta = self.metadata()
        helm = self.helm_factory(kubeconfig)

        try:
            if helm.history(meta.name, meta.namespace):
                helm.upgrade(meta.name, chart, meta.namespace, self.values, atomic=True, wait=meta.wait)
            else:
                helm.install(
                    meta.name, chart, meta.namespace, self.values,
                    atomic=True, create_namespace=True, wait=meta.wait,
                )
        except HelmError as e:
            raise ReleaseError(self.name, f"installing component: {e}") from e

    def uninstall(self, kubeconfig: Path) -> None:
        helm = self.helm_factory(kubeconfig)
        try:
            if not helm.history(self.name, self.namespace):
                logger.info(f"Component '{self.name}' is not installed, nothing to uninstall")
                return
            helm.uninstall(self.name, self.namespace)
        except HelmError as e:
            raise ReleaseError(self.name, f"uninstalling component: {e}") from e
