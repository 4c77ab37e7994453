"""Tests for the certificate rotator."""

import base64
from unittest.mock import patch

import pytest

from conftest import FakeKubectl, InstantToken
from kforge.certificates import CertificateRotator, RotationTarget, secret_ca
from kforge.errors import KubectlError, RolloutError
from kforge.k8s.rollout import WorkloadKind

NEW_CA = b"-----BEGIN CERTIFICATE-----\nnew\n-----END CERTIFICATE-----\n"
OLD_CA = b"-----BEGIN CERTIFICATE-----\nold\n-----END CERTIFICATE-----\n"

DAEMONSETS = [
    RotationTarget("kube-system", "kube-apiserver", WorkloadKind.DAEMONSET),
    RotationTarget("kube-system", "calico-node", WorkloadKind.DAEMONSET),
]
DEPLOYMENTS = [
    RotationTarget("kube-system", "kube-scheduler", WorkloadKind.DEPLOYMENT),
    RotationTarget("kube-system", "coredns", WorkloadKind.DEPLOYMENT),
]


def token_secret(name, ca):
    return {
        "metadata": {"namespace": "kube-system", "name": name},
        "data": {"ca.crt": base64.b64encode(ca).decode()},
    }


class SequencedKubectl(FakeKubectl):
    """Returns a different secret listing on every call."""

    def __init__(self, listings):
        super().__init__()
        self.listings = list(listings)
        self.calls = 0

    def list_secrets(self, field_selector=None):
        self.calls += 1
        result = self.listings.pop(0) if len(self.listings) > 1 else self.listings[0]
        if isinstance(result, Exception):
            raise result
        return result


def rotator(kubectl, **kwargs):
    kwargs.setdefault("token_timeout", 60)
    return CertificateRotator(
        kubectl,
        NEW_CA,
        daemonsets=DAEMONSETS,
        deployments=DEPLOYMENTS,
        cancellation=InstantToken(),
        **kwargs,
    )


class TestSecretCa:
    def test_decodes(self):
        assert secret_ca(token_secret("a", NEW_CA)) == NEW_CA

    def test_missing_data(self):
        assert secret_ca({"metadata": {}}) is None


class TestCertificateRotator:
    def test_requires_ca(self):
        with pytest.raises(ValueError):
            CertificateRotator(FakeKubectl(), b"")

    def test_tokens_updated(self):
        kubectl = FakeKubectl(secrets=[token_secret("a", NEW_CA), token_secret("b", OLD_CA)])
        assert not rotator(kubectl).tokens_updated()

        kubectl.secrets = [token_secret("a", NEW_CA), token_secret("b", NEW_CA)]
        assert rotator(kubectl).tokens_updated()

    def test_restarts_after_tokens_update(self):
        stale = [token_secret("a", NEW_CA), token_secret("b", OLD_CA)]
        fresh = [token_secret("a", NEW_CA), token_secret("b", NEW_CA)]
        kubectl = SequencedKubectl([stale, KubectlError("timeout"), fresh])
        restarted = []

        def fake_rollout(kube, kind, namespace, name, **kwargs):
            # All tokens must carry the new CA before the first restart.
            assert kubectl.calls == 3
            restarted.append(name)

        with patch("kforge.certificates.rollout", side_effect=fake_rollout):
            rotator(kubectl).rotate()

        assert restarted == ["kube-apiserver", "calico-node", "kube-scheduler", "coredns"]

    def test_token_timeout(self):
        kubectl = FakeKubectl(secrets=[token_secret("a", OLD_CA)])

        with patch("kforge.certificates.rollout") as mock_rollout:
            with pytest.raises(RolloutError, match="service account tokens"):
                rotator(kubectl, token_timeout=0).rotate()

        mock_rollout.assert_not_called()

    def test_restart_failure_stops_sequence(self):
        kubectl = FakeKubectl(secrets=[token_secret("a", NEW_CA)])
        restarted = []

        def fake_rollout(kube, kind, namespace, name, **kwargs):
            restarted.append(name)
            if name == "calico-node":
                raise RolloutError("did not converge")

        with patch("kforge.certificates.rollout", side_effect=fake_rollout):
            with pytest.raises(RolloutError, match="kube-system/calico-node"):
                rotator(kubectl).rotate()

        assert restarted == ["kube-apiserver", "calico-node"]

    def test_no_targets(self):
        kubectl = FakeKubectl(secrets=[])

        with patch("kforge.certificates.rollout") as mock_rollout:
            CertificateRotator(kubectl, NEW_CA, cancellation=InstantToken()).rotate()

        mock_rollout.assert_not_called()
