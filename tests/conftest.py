"""Shared fixtures and fakes for kforge tests."""

import io
import stat
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml
from rich.console import Console

from kforge.cluster.session import ClusterSession
from kforge.config import load_config
from kforge.controlplane import ComponentRelease
from kforge.components.base import Component, ComponentMetadata
from kforge.errors import HelmError, KubectlError
from kforge.platforms.base import Platform, PlatformMeta
from kforge.terraform.signals import CancellationToken


# =============================================================================
# FAKE TERRAFORM BINARY
# =============================================================================

TERRAFORM_SCRIPT = """#!/bin/sh
case "$1" in
  version)
    echo '{{"terraform_version": "{version}"}}'
    ;;
  output)
    if [ -n "$3" ]; then
      echo "\\"value-of-$3\\""
    else
      echo '{{"kubeconfig": {{"value": "config", "type": "string", "sensitive": true}}}}'
    fi
    ;;
  fail)
    echo "first line"
    echo "boom"
    exit 3
    ;;
  sleepy)
    echo "started"
    sleep "${{2:-30}}"
    ;;
  stamp)
    date +%s%N
    sleep 0.3
    date +%s%N
    ;;
  *)
    echo "ran $*"
    ;;
esac
"""


def write_terraform(directory: Path, version: str = "0.13.7", name: str = "terraform") -> Path:
    """Write an executable shell script standing in for the Terraform binary."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(TERRAFORM_SCRIPT.format(version=version))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class InstantToken(CancellationToken):
    """Cancellation token whose sleeps return immediately."""

    def __init__(self):
        super().__init__()
        self.slept: List[float] = []

    def sleep(self, seconds: float) -> None:
        self.slept.append(seconds)
        self.raise_if_cancelled()


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================


class FakeExecutor:
    """Records Terraform calls; outputs come from a dict."""

    def __init__(self, working_dir: Path, outputs: Optional[Dict[str, Any]] = None, log: Optional[List] = None):
        self.working_dir = Path(working_dir)
        self.outputs = outputs if outputs is not None else {}
        self.log = log if log is not None else []
        self.steps = []

    def init(self):
        self.log.append("init")

    def plan(self):
        self.log.append("plan")

    def apply(self, extra_args=("-parallelism=100",)):
        self.log.append(("apply", tuple(extra_args)))

    def destroy(self):
        self.log.append("destroy")

    def taint(self, resources):
        self.log.append(("taint", list(resources)))

    def execute(self, *steps):
        for step in steps:
            if step.pre_execution_hook is not None:
                step.pre_execution_hook(self)
            self.steps.append(step)
            self.log.append(("execute", tuple(step.args)))

    def output(self, key=""):
        if not key:
            return {k: {"value": v} for k, v in self.outputs.items()}
        return self.outputs.get(key)


class FakePlatform(Platform):
    """Platform whose Terraform work is recorded in a shared log."""

    name = "fake"

    def __init__(self, asset_dir: Path, log: List, managed: bool = False,
                 charts: Optional[List[ComponentRelease]] = None, apply_error: Exception = None):
        self.asset_dir = asset_dir
        self.log = log
        self.managed = managed
        self.charts = charts if charts is not None else []
        self.apply_error = apply_error
        self.config: Dict[str, Any] = {}

    def load_config(self, config):
        self.config = config

    def meta(self):
        return PlatformMeta(
            asset_dir=self.asset_dir,
            expected_nodes=1,
            managed=self.managed,
            control_plane_charts=list(self.charts),
            controller_module_name="fake-test",
        )

    def initialize(self, executor):
        self.log.append("platform-initialize")

    def apply(self, executor):
        if self.apply_error is not None:
            raise self.apply_error
        self.log.append("platform-apply")

    def apply_without_parallel(self, executor):
        self.log.append("platform-apply-without-parallel")

    def destroy(self, executor):
        self.log.append("platform-destroy")


class FakeKubectl:
    def __init__(self, namespaces=None, nodes=None, secrets=None, objects=None):
        self.namespaces = namespaces if namespaces is not None else []
        self.nodes = nodes if nodes is not None else []
        self.secrets = secrets if secrets is not None else []
        self.objects = objects if objects is not None else {}
        self.labels = []
        self.deleted = []
        self.patched = []

    def list_namespaces(self):
        return self.namespaces

    def list_nodes(self):
        return self.nodes

    def list_component_statuses(self):
        return []

    def list_secrets(self, field_selector=None):
        if isinstance(self.secrets, Exception):
            raise self.secrets
        return self.secrets

    def label(self, kind, name, labels, namespace=None):
        self.labels.append((kind, name, labels))

    def delete(self, kind, name, namespace=None, wait=True):
        self.deleted.append((kind, name))

    def patch(self, kind, name, patch, namespace=None, patch_type="strategic"):
        self.patched.append((kind, namespace, name, patch))
        return self.objects.get((kind, name), {"metadata": {"generation": 1}})

    def get_json(self, kind, name=None, namespace=None, **kwargs):
        obj = self.objects.get((kind, name))
        if obj is None:
            raise KubectlError(f'Error from server (NotFound): {kind} "{name}" not found')
        if isinstance(obj, Exception):
            raise obj
        return obj


class FakeHelm:
    """Helm client keeping releases in memory."""

    def __init__(self, releases=None, fail_on=()):
        self.releases = set(releases or ())
        self.fail_on = set(fail_on)
        self.calls = []

    def history(self, name, namespace):
        self.calls.append(("history", name))
        return [{"revision": 1}] if name in self.releases else []

    def install(self, name, chart, namespace, values=None, atomic=True, create_namespace=True, wait=False):
        self.calls.append(("install", name))
        if name in self.fail_on:
            raise HelmError(f"install {name} failed")
        self.releases.add(name)

    def upgrade(self, name, chart, namespace, values=None, atomic=True, wait=False):
        self.calls.append(("upgrade", name))
        if name in self.fail_on:
            raise HelmError(f"upgrade {name} failed")

    def uninstall(self, name, namespace):
        self.calls.append(("uninstall", name))
        self.releases.discard(name)

    def template(self, name, chart, namespace, values=None):
        self.calls.append(("template", name))
        return f"---\n# Source: {name}/templates/deployment.yaml\nkind: Deployment\n"


class FakeComponent(Component):
    def __init__(self, name: str, log: List, fail: bool = False):
        super().__init__(name)
        self.log = log
        self.fail = fail

    def load_config(self, config):
        pass

    def render_manifests(self):
        return {f"{self.name}/b.yaml": "kind: B", f"{self.name}/a.yaml": "kind: A"}

    def install(self, kubeconfig):
        if self.fail:
            raise HelmError(f"installing {self.name} failed")
        self.log.append(("install", self.name))

    def uninstall(self, kubeconfig):
        self.log.append(("uninstall", self.name))

    def metadata(self):
        return ComponentMetadata(name=self.name, namespace=f"ns-{self.name}")


class FakeVerifier:
    def __init__(self, log, cluster, cancellation=None, console=None):
        self.log = log
        self.cluster = cluster

    def verify(self):
        self.log.append("verify")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def console():
    """Console writing into a buffer, readable through console.file.getvalue()."""
    return Console(file=io.StringIO(), width=200)


@pytest.fixture
def asset_dir(tmp_path):
    """Asset directory with a kubeconfig already in place."""
    path = tmp_path / "assets"
    kubeconfig = path / "cluster-assets" / "auth" / "kubeconfig"
    kubeconfig.parent.mkdir(parents=True)
    kubeconfig.write_text("apiVersion: v1\nkind: Config\n")
    return path


def write_chart(asset_dir: Path, release: ComponentRelease) -> Path:
    path = asset_dir / "cluster-assets" / "charts" / release.namespace / release.name
    path.mkdir(parents=True, exist_ok=True)
    (path / "Chart.yaml").write_text(yaml.safe_dump({"name": release.name, "version": "1.0.0"}))
    return path


def write_config(directory: Path, document: Dict[str, Any]) -> Path:
    path = directory / "kforge.yaml"
    path.write_text(yaml.safe_dump(document))
    return path


class SessionFactory:
    """Builds ClusterSessions wired to fakes sharing one call log."""

    def __init__(self, tmp_path: Path, asset_dir: Path, console: Console):
        self.tmp_path = tmp_path
        self.asset_dir = asset_dir
        self.console = console
        self.log: List = []
        self.outputs: Dict[str, Any] = {}
        self.kubectl = FakeKubectl(namespaces=[{"metadata": {"name": "default"}}])
        self.helm = FakeHelm()
        self.failing_components = set()
        self.platform: Optional[FakePlatform] = None
        self.executor: Optional[FakeExecutor] = None

    def __call__(self, answers=("yes",), components=("first", "second"), platform=True,
                 platform_cls=None, **platform_kwargs):
        document: Dict[str, Any] = {"components": list(components)}
        if platform:
            document["cluster"] = {"platform": "fake", "config": {"asset_dir": str(self.asset_dir)}}
        config = load_config(write_config(self.tmp_path, document))

        self.platform = (platform_cls or FakePlatform)(self.asset_dir, self.log, **platform_kwargs)
        answers_iter = iter(answers)

        def input_fn(prompt):
            self.log.append(("prompt", prompt))
            return next(answers_iter)

        def executor_factory(executor_config, cancellation=None):
            self.executor = FakeExecutor(executor_config.working_dir, self.outputs, self.log)
            return self.executor

        def component_factory(component_config):
            return FakeComponent(
                component_config.name, self.log, fail=component_config.name in self.failing_components
            )

        return ClusterSession(
            config,
            require_platform=platform,
            cancellation=InstantToken(),
            console=self.console,
            input_fn=input_fn,
            platform_factory=lambda name: self.platform,
            executor_factory=executor_factory,
            kubectl_factory=lambda kubeconfig: self.kubectl,
            helm_factory=lambda kubeconfig: self.helm,
            component_factory=component_factory,
            verifier_factory=lambda cluster, cancellation=None, console=None: FakeVerifier(self.log, cluster),
        )


@pytest.fixture
def sessions(tmp_path, asset_dir, console):
    return SessionFactory(tmp_path, asset_dir, console)
