"""
Certificate rotation of a running cluster.

After the control plane has been redeployed with a new Kubernetes CA, the
controller manager rewrites every service account token secret with the new
CA. Once all secrets carry it, workloads that cache the old CA are restarted
one by one, DaemonSets first, then Deployments.
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_exponential,
)

from kforge.errors import KubectlError, RolloutError
from kforge.k8s.kubectl import Kubectl
from kforge.k8s.rollout import POLL_INTERVAL, ROLLOUT_TIMEOUT, WorkloadKind, rollout
from kforge.terraform.signals import CancellationToken

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_TOKEN_SELECTOR = "type=kubernetes.io/service-account-token"
CA_CERT_KEY = "ca.crt"
SETTLE_SECONDS = 10
TOKEN_WAIT_MAX_BACKOFF = 30


@dataclass(frozen=True)
class RotationTarget:
    namespace: str
    name: str
    kind: WorkloadKind


def secret_ca(secret: Dict[str, Any]) -> Optional[bytes]:
    encoded = (secret.get("data") or {}).get(CA_CERT_KEY)
    if encoded is None:
        return None
    try:
        return base64.b64decode(encoded)
    except (binascii.Error, ValueError):
        return None


class CertificateRotator:
    """
    Waits for the new CA to reach all service account tokens, then restarts
    the given workloads strictly one at a time.
    """

    def __init__(
        self,
        kubectl: Kubectl,
        new_ca: bytes,
        daemonsets: Sequence[RotationTarget] = (),
        deployments: Sequence[RotationTarget] = (),
        token_timeout: float = ROLLOUT_TIMEOUT,
        rollout_timeout: float = ROLLOUT_TIMEOUT,
        settle: float = SETTLE_SECONDS,
        poll_interval: float = POLL_INTERVAL,
        cancellation: Optional[CancellationToken] = None,
    ):
        if not new_ca:
            raise ValueError("new CA certificate can't be empty")

        self.kubectl = kubectl
        self.new_ca = new_ca
        self.daemonsets = list(daemonsets)
        self.deployments = list(deployments)
        self.token_timeout = token_timeout
        self.rollout_timeout = rollout_timeout
        self.settle = settle
        self.poll_interval = poll_interval
        self.cancellation = cancellation or CancellationToken()

    def tokens_updated(self) -> bool:
        """True if every service account token secret carries the new CA."""
        secrets = self.kubectl.list_secrets(field_selector=SERVICE_ACCOUNT_TOKEN_SELECTOR)
        stale = [
            f"{s.get('metadata', {}).get('namespace')}/{s.get('metadata', {}).get('name')}"
            for s in secrets
            if secret_ca(s) != self.new_ca
        ]
        if stale:
            logger.debug(f"{len(stale)} service account tokens still carry the old CA")
        return not stale

    def wait_for_tokens(self) -> None:
        """
        Poll service account tokens with exponential backoff until all are updated.

        Raises:
            RolloutError: If the timeout expires first
        """
        retrying = Retrying(
            stop=stop_after_delay(self.token_timeout),
            wait=wait_exponential(multiplier=1, min=1, max=TOKEN_WAIT_MAX_BACKOFF),
            retry=retry_if_result(lambda done: not done) | retry_if_exception_type(KubectlError),
            sleep=self.cancellation.sleep,
        )

        try:
            retrying(self.tokens_updated)
        except RetryError as e:
            last = e.last_attempt
            detail = f": {last.exception()}" if last.failed else ""
            raise RolloutError(
                "not all service account tokens include the new CA certificate "
                f"within {int(self.token_timeout)}s{detail}"
            ) from e

    @property
    def targets(self) -> List[RotationTarget]:
        return self.daemonsets + self.deployments

    def restart(self, target: RotationTarget) -> None:
        logger.info(
            f"Restarting {target.kind.value} {target.namespace}/{target.name} "
            "to pick up new Kubernetes CA Certificate"
        )
        try:
            rollout(
                self.kubectl, target.kind, target.namespace, target.name,
                settle=self.settle,
                timeout=self.rollout_timeout,
                interval=self.poll_interval,
                cancellation=self.cancellation,
            )
        except RolloutError as e:
            raise RolloutError(
                f"restarting {target.kind.value} {target.namespace}/{target.name}: {e}"
            ) from e

    def rotate(self) -> None:
        logger.info("Waiting for all service account tokens on the cluster to be updated...")
        self.wait_for_tokens()
        logger.info("All service account tokens have been updated with new Kubernetes CA certificate")

        for target in self.targets:
            self.cancellation.raise_if_cancelled()
            self.restart(target)
