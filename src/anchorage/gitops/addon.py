# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/gitops/addon.py

from __future__ import annotations

import logging

from anchorage.config.models import AddonRelease
from anchorage.deploy.graph import Ack
from anchorage.helm.interface import IHelm

log = logging.getLogger("anchorage")


def install_addon(helm: IHelm, rel: AddonRelease) -> Ack:
    """
    Install or upgrade the GitOps operator release.

    helm runs with --wait/--atomic, so returning at all means the release is
    deployed; a failed install is rolled back by helm and raises HelmError.
    """
    log.info("[addon] Installing %s (%s %s) into %s", rel.name, rel.chart_ref, rel.version or "latest", rel.namespace)
    helm.add_repo(rel.repo_name, str(rel.repo_url))
    helm.update_repos()
    helm.upgrade_install(rel)
    return Ack(ref=f"{rel.namespace}/{rel.name}", detail={"chart": rel.chart_ref, "version": rel.version})


def wait_for_addon_crds(applier, rel: AddonRelease) -> Ack:
    """Readiness gate: the operator's CRDs must be Established before custom resources are sent."""
    applier.wait_for_crds(rel.crds, attempts=rel.crd_wait_attempts, interval=rel.crd_wait_interval)
    return Ack(ref=",".join(rel.crds))
