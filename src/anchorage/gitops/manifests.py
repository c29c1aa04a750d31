# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/gitops/manifests.py
"""
Builders for the objects the sync pipeline submits. Plain dicts, no I/O.
"""

from __future__ import annotations

from typing import Dict, Optional

from anchorage.config.models import DeploymentSpec, SourceSpec, SubstitutionSpec

SOURCE_API_VERSION = "source.toolkit.fluxcd.io/v1"
KUSTOMIZE_API_VERSION = "kustomize.toolkit.fluxcd.io/v1"

MANAGED_BY = {"app.kubernetes.io/managed-by": "anchorage"}


def _meta(name: str, namespace: Optional[str] = None) -> dict:
    meta = {"name": name, "labels": dict(MANAGED_BY)}
    if namespace:
        meta["namespace"] = namespace
    return meta


def namespace(name: str) -> dict:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": _meta(name)}


def git_repository(src: SourceSpec, namespace: str) -> dict:
    ref: Dict[str, str] = {}
    for key in ("branch", "tag", "semver", "commit"):
        value = getattr(src, key)
        if value:
            ref[key] = value
            break

    spec = {"url": src.url, "interval": src.interval, "ref": ref}
    if src.secret_ref:
        spec["secretRef"] = {"name": src.secret_ref}

    return {
        "apiVersion": SOURCE_API_VERSION,
        "kind": "GitRepository",
        "metadata": _meta(src.name, namespace),
        "spec": spec,
    }


def substitutions_configmap(
    subs: SubstitutionSpec,
    namespace: str,
    cluster_vars: Optional[Dict[str, str]] = None,
) -> dict:
    """cluster_vars (public IP, cluster name) take precedence over user data."""
    data = {k: str(v) for k, v in subs.data.items()}
    data.update(cluster_vars or {})
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _meta(subs.name, namespace),
        "data": data,
    }


def kustomization(
    dep: DeploymentSpec,
    *,
    namespace: str,
    source_name: str,
    config_name: str,
) -> dict:
    return {
        "apiVersion": KUSTOMIZE_API_VERSION,
        "kind": "Kustomization",
        "metadata": _meta(dep.name, namespace),
        "spec": {
            "interval": dep.interval,
            "path": dep.path,
            "prune": dep.prune,
            "wait": dep.wait,
            "timeout": dep.timeout,
            "targetNamespace": dep.target_namespace,
            "sourceRef": {"kind": "GitRepository", "name": source_name},
            "postBuild": {
                "substituteFrom": [{"kind": "ConfigMap", "name": config_name}],
            },
        },
    }
