"""
Rolling restarts of DaemonSets and Deployments.

A restart bumps the ``kubectl.kubernetes.io/restartedAt`` pod template
annotation, exactly like ``kubectl rollout restart``, and returns the new
object generation. Convergence is then polled until the controller has
observed that generation and all replicas are updated and ready.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from tenacity import RetryError, Retrying, retry_if_exception_type, retry_if_result, stop_after_delay, wait_fixed

from kforge.errors import KubectlError, RolloutError
from kforge.k8s.kubectl import Kubectl
from kforge.terraform.signals import CancellationToken

logger = logging.getLogger(__name__)

RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"
ROLLOUT_TIMEOUT = 15 * 60
POLL_INTERVAL = 5


class WorkloadKind(str, Enum):
    DAEMONSET = "DaemonSet"
    DEPLOYMENT = "Deployment"

    @property
    def resource(self) -> str:
        return self.value.lower()


class _TransientKubectlError(Exception):
    pass


def daemonset_up_to_date(ds: Dict[str, Any], generation: int) -> bool:
    strategy = ds.get("spec", {}).get("updateStrategy", {}).get("type", "RollingUpdate")
    if strategy != "RollingUpdate":
        raise RolloutError("rollout status is only available for RollingUpdate strategy type")

    status = ds.get("status", {})
    if generation > 0 and status.get("observedGeneration", 0) < generation:
        return False

    desired = status.get("desiredNumberScheduled", 0)
    return status.get("numberReady", 0) == desired and status.get("updatedNumberScheduled", 0) == desired


def deployment_up_to_date(deploy: Dict[str, Any], generation: int) -> bool:
    status = deploy.get("status", {})
    if status.get("observedGeneration", 0) < generation:
        return False

    progressing = None
    for condition in status.get("conditions", []) or []:
        if condition.get("type") == "Progressing":
            progressing = condition
    if progressing is not None and progressing.get("reason") == "ProgressDeadlineExceeded":
        name = deploy.get("metadata", {}).get("name", "")
        raise RolloutError(f"deployment '{name}' exceeded its progress deadline")

    replicas = deploy.get("spec", {}).get("replicas")
    updated = status.get("updatedReplicas", 0)
    if replicas is not None and updated < replicas:
        return False
    if status.get("replicas", 0) > updated:
        return False
    if status.get("availableReplicas", 0) < updated:
        return False

    return True


UP_TO_DATE = {
    WorkloadKind.DAEMONSET: daemonset_up_to_date,
    WorkloadKind.DEPLOYMENT: deployment_up_to_date,
}


def rollout_restart(kubectl: Kubectl, kind: WorkloadKind, namespace: str, name: str) -> int:
    """Trigger a rolling restart and return the resulting generation."""
    restarted_at = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    patch = {"spec": {"template": {"metadata": {"annotations": {RESTARTED_AT_ANNOTATION: restarted_at}}}}}

    try:
        updated = kubectl.patch(kind.resource, name, patch, namespace=namespace)
    except KubectlError as e:
        raise RolloutError(f"restarting {kind.value} {namespace}/{name}: {e}") from e

    return int(updated.get("metadata", {}).get("generation", 0))


def wait_for_rollout(
    kubectl: Kubectl,
    kind: WorkloadKind,
    namespace: str,
    name: str,
    generation: int,
    timeout: float = ROLLOUT_TIMEOUT,
    interval: float = POLL_INTERVAL,
    cancellation: Optional[CancellationToken] = None,
) -> None:
    """
    Poll a workload until it has converged on generation.

    Raises:
        RolloutError: On timeout, a deleted object, or an unrecoverable status
    """
    up_to_date = UP_TO_DATE[kind]
    token = cancellation or CancellationToken()

    def check() -> bool:
        try:
            obj = kubectl.get_json(kind.resource, name, namespace=namespace)
        except KubectlError as e:
            if "NotFound" in str(e):
                raise RolloutError(f"{kind.value} {namespace}/{name}: object has been deleted") from e
            raise _TransientKubectlError(str(e)) from e
        return up_to_date(obj, generation)

    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda done: not done) | retry_if_exception_type(_TransientKubectlError),
        sleep=token.sleep,
    )

    try:
        retrying(check)
    except RetryError as e:
        last = e.last_attempt
        detail = f": {last.exception()}" if last.failed else ""
        raise RolloutError(
            f"{kind.value} {namespace}/{name} did not converge within {int(timeout)}s{detail}"
        ) from e


def rollout(
    kubectl: Kubectl,
    kind: WorkloadKind,
    namespace: str,
    name: str,
    settle: float = 10,
    timeout: float = ROLLOUT_TIMEOUT,
    interval: float = POLL_INTERVAL,
    cancellation: Optional[CancellationToken] = None,
) -> None:
    """Restart a workload, let the controllers settle, then wait for convergence."""
    token = cancellation or CancellationToken()

    generation = rollout_restart(kubectl, kind, namespace, name)
    logger.info(f"Restarted {kind.value} {namespace}/{name}, waiting for generation {generation}")

    # Covers controller-manager election and reconciliation latency.
    token.sleep(settle)

    wait_for_rollout(
        kubectl, kind, namespace, name, generation,
        timeout=timeout, interval=interval, cancellation=token,
    )
