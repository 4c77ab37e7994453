"""
Helm client.

Wraps the helm binary for release history, install, upgrade, uninstall and
template rendering. Values are passed through a temporary YAML file so that
nested structures survive unchanged.
"""

import json
import logging
import os
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

from kforge.errors import HelmError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15 * 60


@dataclass(frozen=True)
class Chart:
    path: Path
    name: str
    version: str = ""


def load_chart(path: Path) -> Chart:
    """
    Load a chart directory.

    Raises:
        HelmError: If the directory or its Chart.yaml is missing or invalid
    """
    path = Path(path)
    chart_file = path / "Chart.yaml"
    if not chart_file.is_file():
        raise HelmError(f"Chart.yaml not found in {path}")

    try:
        with open(chart_file, "r") as f:
            meta = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise HelmError(f"Invalid Chart.yaml in {path}: {e}") from e

    if not isinstance(meta, dict) or not meta.get("name"):
        raise HelmError(f"Chart.yaml in {path} has no name")

    return Chart(path=path, name=meta["name"], version=str(meta.get("version", "")))


class HelmClient:
    """Runs helm against one cluster."""

    def __init__(self, kubeconfig: Optional[Path] = None, binary: str = "helm", timeout: float = DEFAULT_TIMEOUT):
        self.kubeconfig = Path(kubeconfig) if kubeconfig else None
        self.binary = binary
        self.timeout = timeout

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        if self.kubeconfig is not None:
            cmd.extend(["--kubeconfig", str(self.kubeconfig)])

        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (subprocess.SubprocessError, OSError) as e:
            raise HelmError(f"helm {' '.join(args)} failed: {e}") from e

    def _check(self, *args: str) -> str:
        result = self._run(*args)
        if result.returncode != 0:
            raise HelmError(f"helm {args[0]} failed: {result.stderr.strip()}")
        return result.stdout

    @contextmanager
    def _values_file(self, values: Optional[Dict[str, Any]]) -> Iterator[List[str]]:
        if not values:
            yield []
            return

        fd, name = tempfile.mkstemp(prefix="kforge-values-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(values, f, default_flow_style=False)
            yield ["-f", name]
        finally:
            os.unlink(name)

    def history(self, name: str, namespace: str) -> List[Dict[str, Any]]:
        """Most recent revision of a release, or an empty list if it does not exist."""
        result = self._run("history", name, "-n", namespace, "--max", "1", "-o", "json")
        if result.returncode != 0:
            if "not found" in result.stderr:
                return []
            raise HelmError(f"helm history {name} failed: {result.stderr.strip()}")

        try:
            return json.loads(result.stdout or "[]")
        except ValueError as e:
            raise HelmError(f"helm history {name} returned invalid JSON: {e}") from e

    def install(
        self,
        name: str,
        chart: Chart,
        namespace: str,
        values: Optional[Dict[str, Any]] = None,
        atomic: bool = True,
        create_namespace: bool = True,
        wait: bool = False,
    ) -> None:
        args = ["install", name, str(chart.path), "-n", namespace]
        if atomic:
            args.append("--atomic")
        if create_namespace:
            args.append("--create-namespace")
        if wait:
            args.append("--wait")

        with self._values_file(values) as values_args:
            self._check(*args, *values_args)

    def upgrade(
        self,
        name: str,
        chart: Chart,
        namespace: str,
        values: Optional[Dict[str, Any]] = None,
        atomic: bool = True,
        wait: bool = False,
    ) -> None:
        args = ["upgrade", name, str(chart.path), "-n", namespace]
        if atomic:
            args.append("--atomic")
        if wait:
            args.append("--wait")

        with self._values_file(values) as values_args:
            self._check(*args, *values_args)

    def uninstall(self, name: str, namespace: str) -> None:
        self._check("uninstall", name, "-n", namespace)

    def template(self, name: str, chart: Chart, namespace: str, values: Optional[Dict[str, Any]] = None) -> str:
        with self._values_file(values) as values_args:
            return self._check("template", name, str(chart.path), "-n", namespace, *values_args)


def split_manifests(rendered: str) -> Dict[str, str]:
    """
    Split ``helm template`` output into files keyed by their ``# Source:`` path.
    """
    manifests: Dict[str, str] = {}
    for document in rendered.split("\n---\n"):
        document = document.strip()
        if document.startswith("---"):
            document = document[3:].strip()
        if not document:
            continue

        first, _, body = document.partition("\n")
        if first.startswith("# Source: "):
            filename = first[len("# Source: "):].strip()
        else:
            filename, body = f"manifest-{len(manifests)}.yaml", document

        if filename in manifests:
            manifests[filename] += f"\n---\n{body}"
        else:
            manifests[filename] = body
    return manifests
