"""
Readiness verification of a freshly applied cluster.

Two bounded retry loops run one after the other: first until the API server
answers, then until every expected node reports Ready.
"""

import logging
from typing import Optional

from rich.console import Console
from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from kforge.errors import KforgeError, ReadinessError
from kforge.k8s.cluster import Cluster, NodeStatus
from kforge.terraform.signals import CancellationToken

logger = logging.getLogger(__name__)

RETRIES = 18
RETRY_INTERVAL = 10


class ReadinessVerifier:
    """Waits for a cluster to become reachable and for its nodes to be ready."""

    def __init__(
        self,
        cluster: Cluster,
        retries: int = RETRIES,
        interval: float = RETRY_INTERVAL,
        cancellation: Optional[CancellationToken] = None,
        console: Optional[Console] = None,
    ):
        self.cluster = cluster
        self.retries = retries
        self.interval = interval
        self.cancellation = cancellation or CancellationToken()
        self.console = console or Console()

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.interval),
            retry=retry_if_result(lambda ok: not ok),
            sleep=self.cancellation.sleep,
        )

    def wait_for_api(self) -> None:
        try:
            self._retrying()(self.cluster.ping)
        except RetryError as e:
            raise ReadinessError("failed to ping cluster for readiness") from e

    def wait_for_nodes(self) -> NodeStatus:
        last_status: Optional[NodeStatus] = None
        last_error: Optional[Exception] = None

        def check() -> bool:
            nonlocal last_status, last_error
            try:
                last_status = self.cluster.get_node_status()
            except KforgeError as e:
                # Only an error on the last attempt is reported.
                logger.debug(f"Querying node status failed: {e}")
                last_error = e
                return False
            last_error = None
            return last_status.ready()

        try:
            self._retrying()(check)
        except RetryError as e:
            if last_error is not None:
                raise ReadinessError(
                    f"error determining node status within the allowed time: {last_error}"
                ) from last_error
            raise ReadinessError("not all nodes became ready within the allowed time") from e

        return last_status

    def verify(self) -> NodeStatus:
        """
        Run both readiness loops and print the final node table.

        Raises:
            ReadinessError: If either retry budget is exhausted
            OperationCancelled: If the operator interrupts the wait
        """
        self.console.print("\nNow checking health and readiness of the cluster nodes ...")

        self.wait_for_api()
        status = self.wait_for_nodes()

        status.pretty_print(self.console)
        self.console.print("\nSuccess - cluster is healthy and nodes are ready!")
        return status
