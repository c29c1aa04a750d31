# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/helm/cli_runner.py

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional

import yaml

from anchorage.config.models import AddonRelease
from anchorage.helm.errors import HelmError

log = logging.getLogger("anchorage")


class HelmCliRunner:
    """
    Thin wrapper over the local helm binary.

    Every call is pointed at one cluster through --kubeconfig (and optionally
    --kube-context), so the operator's default kubeconfig is never touched.
    """

    def __init__(
        self,
        *,
        kubeconfig: Optional[Path] = None,
        kube_context: Optional[str] = None,
        binary: str = "helm",
        debug: bool = False,
    ):
        self.kubeconfig = Path(kubeconfig) if kubeconfig else None
        self.kube_context = kube_context
        self.binary = binary
        self.debug = debug

    def _base(self) -> List[str]:
        argv = [self.binary]
        if self.kubeconfig:
            argv += ["--kubeconfig", str(self.kubeconfig)]
        if self.kube_context:
            argv += ["--kube-context", self.kube_context]
        return argv

    def _run(self, args: List[str], *, ok_codes=(0,)) -> subprocess.CompletedProcess:
        argv = self._base() + args
        if self.debug:
            argv.append("--debug")
        log.debug("[helm] %s", " ".join(argv))
        cp = subprocess.run(
            argv,
            check=False,
            text=True,
            capture_output=True,
            env=dict(os.environ),
        )
        if cp.returncode not in ok_codes:
            stderr = (cp.stderr or "").strip()
            raise HelmError(
                f"helm {' '.join(args[:2])} failed (rc={cp.returncode}): {stderr}",
                argv=argv,
                returncode=cp.returncode,
                stderr=stderr,
            )
        return cp

    # ------------------------- repos -------------------------

    def add_repo(self, name: str, url: str) -> None:
        self._run(["repo", "add", name, str(url), "--force-update"])

    def update_repos(self) -> None:
        self._run(["repo", "update"])

    # ------------------------- releases -------------------------

    def upgrade_install(self, rel: AddonRelease) -> None:
        args = [
            "upgrade", "--install", rel.name, rel.chart_ref,
            "-n", rel.namespace,
            "--timeout", f"{rel.timeout_seconds}s",
        ]
        if rel.version:
            args += ["--version", rel.version]
        if rel.create_namespace:
            args.append("--create-namespace")
        if rel.wait:
            args.append("--wait")
        if rel.atomic:
            args.append("--atomic")

        if not rel.values:
            self._run(args)
            return

        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=True) as tf:
            tf.write(yaml.safe_dump(rel.values, sort_keys=False))
            tf.flush()
            self._run(args + ["-f", tf.name])
