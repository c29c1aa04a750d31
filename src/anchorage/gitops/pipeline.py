# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/gitops/pipeline.py

from __future__ import annotations

import logging
from typing import Callable, Iterable, List

from anchorage.deploy.context import RunContext
from anchorage.deploy.graph import Ack, ResourceGraph, ResourceNode
from anchorage.gitops import manifests
from anchorage.gitops.addon import install_addon, wait_for_addon_crds

log = logging.getLogger("anchorage")

LAYER_ADDON = "addon"
LAYER_SOURCE = "source"
LAYER_CONFIG = "config"
LAYER_DEPLOYMENTS = "deployments"


def cluster_vars(ctx: RunContext) -> dict:
    return {
        "CLUSTER_PUBLIC_IP": ctx.public_ip,
        "CLUSTER_NAME": ctx.cfg.name,
    }


def _kind_label(manifest: dict) -> str:
    return f"k8s:{manifest['kind']}"


def submit(ctx: RunContext, name: str, build: Callable[[], dict]) -> Callable[[], Ack]:
    """
    Node body for one manifest: build it at apply time (so it sees values set
    by earlier nodes), apply it, and record the acknowledged uid.
    """

    def _apply() -> Ack:
        manifest = build()
        uid = ctx.applier.apply(manifest)
        meta = manifest["metadata"]
        ctx.registry.upsert(
            name,
            kind=_kind_label(manifest),
            id=uid,
            attributes={
                "apiVersion": manifest["apiVersion"],
                "name": meta["name"],
                "namespace": meta.get("namespace"),
            },
        )
        return Ack(ref=uid)

    return _apply


def add_sync_pipeline(
    graph: ResourceGraph,
    ctx: RunContext,
    *,
    after: Iterable[str] = (),
) -> List[str]:
    """
    Add the four GitOps layers to graph: operator release, source, substitution
    config, deployments. Every node of a layer depends on every node of the
    layer before it; the first layer depends on `after`.

    Returns the names of the last layer so callers can hang more work off it.
    """
    cfg = ctx.cfg
    rel = cfg.addon
    ns = rel.namespace
    sync = cfg.sync

    # 1) operator release + CRD gate
    release_name = f"addon/{rel.name}"

    def _release() -> Ack:
        ack = install_addon(ctx.helm, rel)
        ctx.registry.upsert(
            release_name,
            kind="helm:release",
            id=ack.ref,
            attributes={"chart": rel.chart_ref, "version": rel.version, "namespace": ns},
        )
        return ack

    graph.add(ResourceNode(
        name=release_name, kind="helm:release", apply=_release,
        depends_on=list(after), layer=LAYER_ADDON,
    ))
    crds_name = f"addon/{rel.name}/crds"
    graph.add(ResourceNode(
        name=crds_name, kind="gate:crds",
        apply=lambda: wait_for_addon_crds(ctx.applier, rel),
        depends_on=[release_name], layer=LAYER_ADDON,
    ))
    layer1 = [release_name, crds_name]

    # 2) source
    source_name = f"source/{sync.source.name}"
    graph.add(ResourceNode(
        name=source_name, kind="k8s:GitRepository",
        apply=submit(ctx, source_name, lambda: manifests.git_repository(sync.source, ns)),
        depends_on=list(layer1), layer=LAYER_SOURCE,
    ))
    layer2 = [source_name]

    # 3) substitution config
    config_name = f"config/{sync.substitutions.name}"
    graph.add(ResourceNode(
        name=config_name, kind="k8s:ConfigMap",
        apply=submit(ctx, config_name, lambda: manifests.substitutions_configmap(
            sync.substitutions, ns, cluster_vars(ctx),
        )),
        depends_on=list(layer2), layer=LAYER_CONFIG,
    ))
    layer3 = [config_name]

    # 4) deployments, each behind its target namespace
    layer4: List[str] = []
    for dep in sync.deployments:
        deps = list(layer3)
        ns_node = f"namespace/{dep.target_namespace}"
        if dep.create_namespace and dep.target_namespace != ns:
            if ns_node not in graph:
                target = dep.target_namespace
                graph.add(ResourceNode(
                    name=ns_node, kind="k8s:Namespace",
                    apply=submit(ctx, ns_node, lambda target=target: manifests.namespace(target)),
                    depends_on=list(layer3), layer=LAYER_DEPLOYMENTS,
                ))
                layer4.append(ns_node)
            deps.append(ns_node)

        dep_name = f"deployment/{dep.name}"
        graph.add(ResourceNode(
            name=dep_name, kind="k8s:Kustomization",
            apply=submit(ctx, dep_name, lambda dep=dep: manifests.kustomization(
                dep, namespace=ns, source_name=sync.source.name, config_name=sync.substitutions.name,
            )),
            depends_on=deps, layer=LAYER_DEPLOYMENTS,
        ))
        layer4.append(dep_name)

    log.debug("[pipeline] %d sync nodes", len(layer1) + len(layer2) + len(layer3) + len(layer4))
    return layer4 or layer3
