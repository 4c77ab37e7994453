"""
Generic platforms backed by a user-supplied Terraform module.

The module does the cloud-specific work; kforge writes a ``cluster.tf.json``
that instantiates it and re-exports the outputs the orchestrators consume:
``kubeconfig``, one ``<chart>_values`` per control-plane chart and, with
DNS configured, ``dns_entries``.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

from rich.console import Console
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from kforge.errors import ConfigError, KubectlError, ReadinessError
from kforge.k8s.kubectl import Kubectl
from kforge.platforms import dns
from kforge.platforms.base import (
    Platform,
    PlatformMeta,
    PostApplyHook,
    common_control_plane_charts,
    common_daemonsets,
    common_deployments,
)
from kforge.terraform.executor import ExecutionStep, Executor
from kforge.terraform.signals import CancellationToken

logger = logging.getLogger(__name__)

CLUSTER_FILE = "cluster.tf.json"
DEFAULT_STORAGE_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"
STORAGE_CLASS_TIMEOUT = 5 * 60
STORAGE_CLASS_INTERVAL = 5


def _positive_int(config: Dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = config.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ConfigError(f"'{key}' must be an integer >= {minimum}, got {value!r}")
    return value


class GenericPlatform(Platform):
    """Self-hosted control plane on infrastructure created by a Terraform module."""

    name = "generic"
    managed = False

    def __init__(self, input_fn: Callable[[str], str] = input, console: Optional[Console] = None):
        self.input_fn = input_fn
        self.console = console or Console()
        self.config: Dict[str, Any] = {}

    def load_config(self, config: Dict[str, Any]) -> None:
        for key in ("cluster_name", "asset_dir", "module_source"):
            if not config.get(key):
                raise ConfigError(f"{self.name} platform: missing '{key}'")

        _positive_int(config, "controller_count", 1, 1)
        _positive_int(config, "worker_count", 0, 0)

        variables = config.get("variables", {})
        if not isinstance(variables, dict):
            raise ConfigError(f"{self.name} platform: 'variables' must be a mapping")

        dns_config = config.get("dns")
        if dns_config is not None:
            if not dns_config.get("zone"):
                raise ConfigError(f"{self.name} platform: dns block requires 'zone'")
            dns.parse_provider(dns_config)

        self.config = dict(config)

    @property
    def cluster_name(self) -> str:
        return self.config["cluster_name"]

    @property
    def controller_module_name(self) -> str:
        return f"{self.name}-{self.cluster_name}"

    @property
    def self_hosted_kubelet(self) -> bool:
        return not self.config.get("disable_self_hosted_kubelet", False)

    @property
    def manual_dns(self) -> bool:
        dns_config = self.config.get("dns")
        return dns_config is not None and dns.parse_provider(dns_config) == dns.MANUAL

    def meta(self) -> PlatformMeta:
        controllers = self.config.get("controller_count", 1)
        workers = self.config.get("worker_count", 0)
        return PlatformMeta(
            asset_dir=Path(self.config["asset_dir"]).expanduser(),
            expected_nodes=controllers + workers,
            managed=self.managed,
            control_plane_charts=common_control_plane_charts(self.self_hosted_kubelet),
            controller_module_name=self.controller_module_name,
            daemonsets=common_daemonsets(self.self_hosted_kubelet),
            deployments=common_deployments(),
        )

    def _output_names(self) -> List[str]:
        names = ["kubeconfig"]
        names.extend(f"{chart.name}_values" for chart in self.meta().control_plane_charts)
        if self.config.get("dns") is not None:
            names.append(dns.DNS_ENTRIES_OUTPUT)
        return names

    def render(self) -> Dict[str, Any]:
        """Terraform JSON document instantiating the cluster module."""
        module = self.controller_module_name
        arguments = {
            "source": self.config["module_source"],
            "cluster_name": self.cluster_name,
            "controller_count": self.config.get("controller_count", 1),
            "worker_count": self.config.get("worker_count", 0),
        }
        if self.config.get("dns") is not None:
            arguments["dns_zone"] = self.config["dns"]["zone"]
        arguments.update(self.config.get("variables", {}))

        outputs = {
            name: {"value": f"${{module.{module}.{name}}}", "sensitive": name == "kubeconfig"}
            for name in self._output_names()
        }

        return {"module": {module: arguments}, "output": outputs}

    def initialize(self, executor: Executor) -> None:
        path = executor.working_dir / CLUSTER_FILE
        path.write_text(json.dumps(self.render(), indent=2) + "\n")
        logger.debug(f"Wrote cluster definition to {path}")

    def _apply(self, executor: Executor, extra_args: Sequence[str]) -> None:
        if not self.manual_dns:
            executor.apply(extra_args)
            return

        zone = self.config["dns"]["zone"]
        steps = [
            ExecutionStep(
                "create DNS resources",
                ["apply", "-auto-approve", f"-target=module.{self.controller_module_name}.null_resource.dns_entries"],
            ),
            ExecutionStep(
                "create infrastructure",
                ["apply", "-auto-approve", *extra_args],
                pre_execution_hook=lambda ex: dns.ask_to_configure(
                    ex, zone, input_fn=self.input_fn, console=self.console
                ),
            ),
        ]
        executor.execute(*steps)

    def apply(self, executor: Executor) -> None:
        self._apply(executor, ["-parallelism=100"])

    def apply_without_parallel(self, executor: Executor) -> None:
        self._apply(executor, ["-parallelism=1"])

    def destroy(self, executor: Executor) -> None:
        executor.destroy()


class ManagedPlatform(GenericPlatform, PostApplyHook):
    """
    Cluster whose control plane is run by the cloud provider.

    Nothing is self-hosted, so there are no control-plane charts to upgrade
    and no workloads to restart for certificate rotation. After apply the
    cluster is only usable once the provider has installed a default
    StorageClass.
    """

    name = "managed"
    managed = True

    def __init__(self, *args, storage_class_timeout: float = STORAGE_CLASS_TIMEOUT,
                 storage_class_interval: float = STORAGE_CLASS_INTERVAL, **kwargs):
        super().__init__(*args, **kwargs)
        self.storage_class_timeout = storage_class_timeout
        self.storage_class_interval = storage_class_interval

    def meta(self) -> PlatformMeta:
        return PlatformMeta(
            asset_dir=Path(self.config["asset_dir"]).expanduser(),
            expected_nodes=self.config.get("worker_count", 0),
            managed=True,
            controller_module_name=self.controller_module_name,
        )

    def _has_default_storage_class(self, kubectl: Kubectl) -> bool:
        try:
            classes = kubectl.list_items("storageclasses")
        except KubectlError as e:
            logger.debug(f"Listing storage classes failed: {e}")
            return False

        for storage_class in classes:
            annotations = storage_class.get("metadata", {}).get("annotations") or {}
            if annotations.get(DEFAULT_STORAGE_CLASS_ANNOTATION) == "true":
                return True
        return False

    def post_apply_hook(self, kubeconfig: Path, cancellation: Optional[CancellationToken] = None) -> None:
        cancellation = cancellation or CancellationToken()
        kubectl = Kubectl(kubeconfig)
        logger.info("Waiting for the default storage class to be created")

        retrying = Retrying(
            stop=stop_after_delay(self.storage_class_timeout),
            wait=wait_fixed(self.storage_class_interval),
            retry=retry_if_result(lambda found: not found),
            sleep=cancellation.sleep,
        )
        try:
            retrying(self._has_default_storage_class, kubectl)
        except RetryError as e:
            raise ReadinessError("default storage class was not created within the allowed time") from e
