import pytest

from anchorage.credentials.rewrite import (
    count_occurrences,
    endpoint_for,
    rewrite,
    rewrite_credential,
)
from anchorage.errors import LoopbackEndpointNotFoundError

LOOPBACK = "https://127.0.0.1:6443"

KUBECONFIG = """apiVersion: v1
clusters:
- cluster:
    certificate-authority-data: LS0tLS1CRUdJTi...
    server: https://127.0.0.1:6443
  name: default
contexts:
- context:
    cluster: default
    user: default
  name: default
current-context: default
kind: Config
"""


def test_rewrite_replaces_server_and_keeps_everything_else():
    out = rewrite(KUBECONFIG, LOOPBACK, "https://203.0.113.10:6443")
    assert "server: https://203.0.113.10:6443" in out
    assert LOOPBACK not in out
    assert out.replace("https://203.0.113.10:6443", LOOPBACK) == KUBECONFIG


def test_rewrite_replaces_every_occurrence():
    artifact = f"a {LOOPBACK} b {LOOPBACK}{LOOPBACK} c"
    assert rewrite(artifact, LOOPBACK, "X") == "a X b XX c"
    assert count_occurrences(artifact, LOOPBACK) == 3


def test_rewrite_twice_is_stable():
    once = rewrite(KUBECONFIG, LOOPBACK, "https://203.0.113.10:6443")
    assert rewrite(once, LOOPBACK, "https://203.0.113.10:6443") == once


def test_rewrite_without_occurrence_returns_input():
    artifact = "server: https://10.0.0.5:6443\n"
    assert rewrite(artifact, LOOPBACK, "https://203.0.113.10:6443") == artifact


def test_rewrite_is_literal_not_a_pattern():
    artifact = "server: https://127a0b0c1:6443\n"
    assert rewrite(artifact, LOOPBACK, "X") == artifact


def test_rewrite_with_empty_search_string_is_identity():
    assert rewrite(KUBECONFIG, "", "X") == KUBECONFIG
    assert count_occurrences(KUBECONFIG, "") == 0


def test_endpoint_for_builds_https_url():
    assert endpoint_for("203.0.113.10") == "https://203.0.113.10:6443"
    assert endpoint_for("203.0.113.10", 16443) == "https://203.0.113.10:16443"


def test_rewrite_credential_reports_count():
    text, n = rewrite_credential(KUBECONFIG, LOOPBACK, "https://203.0.113.10:6443")
    assert n == 1
    assert "https://203.0.113.10:6443" in text


def test_rewrite_credential_strict_raises_when_loopback_missing():
    with pytest.raises(LoopbackEndpointNotFoundError):
        rewrite_credential("server: https://10.0.0.5:6443\n", LOOPBACK, "X")


def test_rewrite_credential_lenient_passes_through():
    artifact = "server: https://10.0.0.5:6443\n"
    text, n = rewrite_credential(artifact, LOOPBACK, "X", strict=False)
    assert (text, n) == (artifact, 0)
