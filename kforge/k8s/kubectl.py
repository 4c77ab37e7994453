"""Thin subprocess wrapper around kubectl."""

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from kforge.errors import KubectlError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


class Kubectl:
    """
    Runs kubectl against one cluster.

    All JSON-returning calls parse ``-o json`` output; non-zero exits raise
    KubectlError with kubectl's stderr.
    """

    def __init__(
        self,
        kubeconfig: Optional[Path] = None,
        binary: str = "kubectl",
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.kubeconfig = Path(kubeconfig) if kubeconfig else None
        self.binary = binary
        self.timeout = timeout

    def _command(self, args: List[str]) -> List[str]:
        cmd = [self.binary]
        if self.kubeconfig is not None:
            cmd.extend(["--kubeconfig", str(self.kubeconfig)])
        cmd.extend(args)
        return cmd

    def run(self, *args: str, stdin: Optional[str] = None) -> str:
        """Run kubectl and return its stdout."""
        cmd = self._command(list(args))
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (subprocess.SubprocessError, OSError) as e:
            raise KubectlError(f"kubectl {' '.join(args)} failed: {e}") from e

        if result.returncode != 0:
            raise KubectlError(f"kubectl {' '.join(args)} failed: {result.stderr.strip()}")

        return result.stdout

    def get_json(
        self,
        kind: str,
        name: Optional[str] = None,
        namespace: Optional[str] = None,
        all_namespaces: bool = False,
        field_selector: Optional[str] = None,
    ) -> Dict[str, Any]:
        args = ["get", kind]
        if name:
            args.append(name)
        if all_namespaces:
            args.append("--all-namespaces")
        elif namespace:
            args.extend(["-n", namespace])
        if field_selector:
            args.append(f"--field-selector={field_selector}")
        args.extend(["-o", "json"])

        output = self.run(*args)
        try:
            return json.loads(output)
        except ValueError as e:
            raise KubectlError(f"kubectl get {kind} returned invalid JSON: {e}") from e

    def list_items(self, kind: str, **kwargs: Any) -> List[Dict[str, Any]]:
        return self.get_json(kind, **kwargs).get("items", [])

    def label(
        self,
        kind: str,
        name: str,
        labels: Dict[str, str],
        namespace: Optional[str] = None,
    ) -> None:
        args = ["label", kind, name, "--overwrite"]
        if namespace:
            args.extend(["-n", namespace])
        args.extend(f"{k}={v}" for k, v in labels.items())
        self.run(*args)

    def patch(
        self,
        kind: str,
        name: str,
        patch: Dict[str, Any],
        namespace: Optional[str] = None,
        patch_type: str = "strategic",
    ) -> Dict[str, Any]:
        """Patch an object and return the updated object."""
        args = ["patch", kind, name, f"--type={patch_type}", "-p", json.dumps(patch), "-o", "json"]
        if namespace:
            args.extend(["-n", namespace])
        output = self.run(*args)
        try:
            return json.loads(output)
        except ValueError as e:
            raise KubectlError(f"kubectl patch {kind}/{name} returned invalid JSON: {e}") from e

    def delete(self, kind: str, name: str, namespace: Optional[str] = None, wait: bool = True) -> None:
        args = ["delete", kind, name, "--ignore-not-found"]
        if namespace:
            args.extend(["-n", namespace])
        if not wait:
            args.append("--wait=false")
        self.run(*args)

    def list_namespaces(self) -> List[Dict[str, Any]]:
        return self.list_items("namespaces")

    def list_nodes(self) -> List[Dict[str, Any]]:
        return self.list_items("nodes")

    def list_component_statuses(self) -> List[Dict[str, Any]]:
        return self.list_items("componentstatuses")

    def list_secrets(self, field_selector: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.list_items("secrets", all_namespaces=True, field_selector=field_selector)
