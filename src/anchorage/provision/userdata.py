# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/provision/userdata.py

from __future__ import annotations

from typing import Iterable

from anchorage.utils.ssh_runner import quote

K3S_INSTALL_URL = "https://get.k3s.io"


def render_boot_script(
    *,
    k3s_version: str,
    tls_san: str,
    extra_args: Iterable[str] = (),
    install_url: str = K3S_INSTALL_URL,
) -> str:
    """
    User data for the instance. Installs a single-node k3s server that
    accepts the static address as an API server name; k3s writes its
    kubeconfig to /etc/rancher/k3s/k3s.yaml when it is done.
    """
    args = ["server", "--tls-san", tls_san, "--write-kubeconfig-mode", "0644", *extra_args]
    return (
        "#!/bin/bash\n"
        "set -euo pipefail\n"
        "exec > >(tee -a /var/log/anchorage-boot.log) 2>&1\n"
        f"echo \"anchorage: installing k3s {k3s_version}\"\n"
        f"curl -sfL {install_url} | INSTALL_K3S_VERSION={quote(k3s_version)} sh -s - "
        + " ".join(quote(a) for a in args)
        + "\n"
        "echo \"anchorage: k3s install finished\"\n"
    )
