"""
Certificate rotation workflow.

Taints every certificate in the Terraform state except the CA private keys,
so the new CA reuses the old public key and still trusts existing
certificates. The infrastructure is then re-applied without parallelism,
the control plane redeployed, and workloads restarted once all service
account tokens carry the new CA.
"""

import base64
import binascii
import logging
from typing import List, Optional

from kforge.certificates import CertificateRotator
from kforge.cluster.session import ClusterSession, OperationResult
from kforge.config import load_config
from kforge.controlplane import ControlPlaneUpgrader, parse_values
from kforge.errors import KforgeError
from kforge.options import CertificateRotateOptions
from kforge.terraform.executor import Executor
from kforge.utils import ask_for_confirmation, print_success

logger = logging.getLogger(__name__)

KUBERNETES_VALUES_OUTPUT = "kubernetes_values"

CERTIFICATE_RESOURCES = [
    "tls_locally_signed_cert.admin",
    "tls_locally_signed_cert.admission-webhook-server",
    "tls_locally_signed_cert.aggregation-client[0]",
    "tls_locally_signed_cert.apiserver",
    "tls_locally_signed_cert.client",
    "tls_locally_signed_cert.kubelet",
    "tls_locally_signed_cert.peer",
    "tls_locally_signed_cert.server",
    "tls_self_signed_cert.aggregation-ca[0]",
    "tls_self_signed_cert.etcd-ca",
    "tls_self_signed_cert.kube-ca",
    # non-CA private keys only
    "tls_private_key.admin",
    "tls_private_key.admission-webhook-server",
    "tls_private_key.aggregation-client[0]",
    "tls_private_key.apiserver",
    "tls_private_key.client",
    "tls_private_key.kubelet",
    "tls_private_key.peer",
    "tls_private_key.server",
]


def certificate_resources(controller_module_name: str) -> List[str]:
    """Fully qualified Terraform addresses of the certificates to taint."""
    return [
        f"module.{controller_module_name}.module.bootkube.{resource}"
        for resource in CERTIFICATE_RESOURCES
    ]


def read_kubernetes_ca(executor: Executor) -> bytes:
    """
    Read the Kubernetes CA certificate from the rendered kubernetes values.

    Raises:
        KforgeError: If the values are missing or not decodable
    """
    try:
        values = parse_values(executor.output(KUBERNETES_VALUES_OUTPUT))
    except ValueError as e:
        raise KforgeError(f"parsing {KUBERNETES_VALUES_OUTPUT} output: {e}") from e

    encoded = (values.get("controllerManager") or {}).get("caCert")
    if not encoded:
        raise KforgeError(f"{KUBERNETES_VALUES_OUTPUT} output contains no controllerManager.caCert")

    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KforgeError(f"decoding Kubernetes CA certificate: {e}") from e


def rotate_certificates(
    options: CertificateRotateOptions,
    session: Optional[ClusterSession] = None,
) -> OperationResult:
    if session is None:
        config = load_config(options.config_path, options.values_path)
        session = ClusterSession(config, verbose=options.verbose)

    if not options.confirm:
        question = (
            "This operation will rotate all certificates of the cluster and restart "
            "control plane workloads. Do you want to proceed?"
        )
        if not ask_for_confirmation(question, session.input_fn):
            session.console.print("Certificate rotation cancelled")
            return session.result("certificate-rotate", cancelled=True)

    with session.stage("initialize"):
        executor = session.initialize()

    with session.stage("check-rotation"):
        if not session.cluster_exists():
            raise KforgeError("cluster does not exist, nothing to rotate")
        meta = session.meta
        if meta.managed:
            raise KforgeError("certificate rotation is not supported on managed platforms")

    with session.stage("taint-certificates"):
        logger.info("Tainting existing certificates")
        executor.taint(certificate_resources(meta.controller_module_name))

    with session.stage("apply-infrastructure"):
        session.platform.apply_without_parallel(executor)

    with session.stage("upgrade-controlplane"):
        kubeconfig = session.kubeconfig()
        session.console.print("\nRedeploying the controlplane with new certificates.")
        upgrader = ControlPlaneUpgrader(
            executor, session.helm_factory(kubeconfig), session.asset_dir, session.console
        )
        upgrader.upgrade(meta.control_plane_charts)

    with session.stage("read-ca"):
        new_ca = read_kubernetes_ca(executor)

    with session.stage("rotate-certificates"):
        rotator = CertificateRotator(
            session.kubectl_factory(kubeconfig),
            new_ca,
            daemonsets=meta.daemonsets,
            deployments=meta.deployments,
            cancellation=session.cancellation,
        )
        rotator.rotate()

    print_success("Certificates rotated successfully")
    return session.result("certificate-rotate", cluster_existed=True)
