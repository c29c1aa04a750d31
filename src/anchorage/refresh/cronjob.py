# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/refresh/cronjob.py

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from anchorage.config.models import DeploymentConfig
from anchorage.deploy.context import RunContext
from anchorage.deploy.graph import ResourceGraph, ResourceNode
from anchorage.errors import ConfigError
from anchorage.gitops.manifests import MANAGED_BY
from anchorage.gitops.pipeline import submit

log = logging.getLogger("anchorage")

LAYER_REFRESH = "refresh"

_SCRIPT = """\
set -u
REGION={region}
REGISTRY={registry}
SECRET={secret}
SA={service_account}
NAMESPACES="{namespaces}"

TOKEN=$(aws ecr get-login-password --region "$REGION") || {{
  echo "refresh: could not get an ECR login token" >&2
  exit 1
}}

total=0
failed=0
for ns in $NAMESPACES; do
  total=$((total + 1))
  if ! kubectl delete secret "$SECRET" -n "$ns" --ignore-not-found; then
    echo "refresh: [$ns] could not delete the old secret" >&2
    failed=$((failed + 1)); continue
  fi
  if ! kubectl create secret docker-registry "$SECRET" -n "$ns" \\
      --docker-server="$REGISTRY" --docker-username=AWS --docker-password="$TOKEN"; then
    echo "refresh: [$ns] could not create the secret" >&2
    failed=$((failed + 1)); continue
  fi
  if ! kubectl get serviceaccount "$SA" -n "$ns" >/dev/null 2>&1; then
    echo "refresh: [$ns] serviceaccount $SA not found, skipping" >&2
    failed=$((failed + 1)); continue
  fi
  if ! kubectl patch serviceaccount "$SA" -n "$ns" \\
      -p "{{\\"imagePullSecrets\\":[{{\\"name\\":\\"$SECRET\\"}}]}}"; then
    echo "refresh: [$ns] could not patch serviceaccount $SA" >&2
    failed=$((failed + 1)); continue
  fi
  echo "refresh: [$ns] ok"
done

echo "refresh: $((total - failed))/$total namespaces refreshed"
if [ "$total" -gt 0 ] && [ "$failed" -eq "$total" ]; then
  exit 1
fi
exit 0
"""


def render_refresh_script(
    *,
    region: str,
    registry: str,
    secret: str,
    service_account: str,
    namespaces: Iterable[str],
) -> str:
    """
    Shell run by the CronJob. The namespace list is baked in at render time;
    one namespace failing never stops the others.
    """
    return _SCRIPT.format(
        region=region,
        registry=registry,
        secret=secret,
        service_account=service_account,
        namespaces=" ".join(namespaces),
    )


def _meta(name: str, namespace: Optional[str] = None) -> dict:
    meta = {"name": name, "labels": dict(MANAGED_BY)}
    if namespace:
        meta["namespace"] = namespace
    return meta


def render_refresh_job(cfg: DeploymentConfig, *, registry_host: Optional[str] = None) -> List[dict]:
    """
    ServiceAccount, RBAC, optional AWS credential Secret and the CronJob that
    keeps the image pull secret fresh in every configured namespace.
    """
    reg = cfg.registry
    host = registry_host or reg.registry
    if not host:
        raise ConfigError(
            "registry.registry is not set and no repository was created; "
            "cannot render the credential refresh job"
        )

    ns = cfg.addon.namespace
    name = reg.job_name
    secret_env = f"{name}-aws"

    script = render_refresh_script(
        region=cfg.aws.region,
        registry=host,
        secret=reg.secret_name,
        service_account=reg.service_account,
        namespaces=reg.namespaces,
    )

    objs: List[dict] = [
        {
            "apiVersion": "v1",
            "kind": "ServiceAccount",
            "metadata": _meta(name, ns),
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": _meta(name),
            "rules": [
                {"apiGroups": [""], "resources": ["secrets"], "verbs": ["get", "create", "delete"]},
                {"apiGroups": [""], "resources": ["serviceaccounts"], "verbs": ["get", "patch"]},
            ],
        },
        {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRoleBinding",
            "metadata": _meta(name),
            "roleRef": {"apiGroup": "rbac.authorization.k8s.io", "kind": "ClusterRole", "name": name},
            "subjects": [{"kind": "ServiceAccount", "name": name, "namespace": ns}],
        },
    ]

    container = {
        "name": "refresh",
        "image": reg.image,
        "command": ["/bin/sh", "-c", script],
        "env": [{"name": "AWS_DEFAULT_REGION", "value": cfg.aws.region}],
    }

    if reg.aws_access_key_id and reg.aws_secret_access_key:
        objs.append({
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": _meta(secret_env, ns),
            "type": "Opaque",
            "stringData": {
                "AWS_ACCESS_KEY_ID": reg.aws_access_key_id,
                "AWS_SECRET_ACCESS_KEY": reg.aws_secret_access_key,
            },
        })
        container["envFrom"] = [{"secretRef": {"name": secret_env}}]
    else:
        log.warning("[refresh] No AWS credentials configured; the job relies on the node's identity")

    objs.append({
        "apiVersion": "batch/v1",
        "kind": "CronJob",
        "metadata": _meta(name, ns),
        "spec": {
            "schedule": reg.schedule,
            "concurrencyPolicy": "Forbid",
            "successfulJobsHistoryLimit": 1,
            "failedJobsHistoryLimit": 3,
            "jobTemplate": {
                "spec": {
                    "backoffLimit": 1,
                    "template": {
                        "spec": {
                            "serviceAccountName": name,
                            "restartPolicy": "Never",
                            "containers": [container],
                        },
                    },
                },
            },
        },
    })
    return objs


def add_refresh_job(
    graph: ResourceGraph,
    ctx: RunContext,
    *,
    after: Iterable[str] = (),
) -> List[str]:
    """
    Add the refresh job's resources after the deployments layer, so the
    namespaces it writes into already exist. Objects are applied in render
    order (identity and RBAC before the CronJob that uses them).
    """
    # rendered once up front for names/kinds; bodies are re-rendered at apply time
    def _render() -> List[dict]:
        # configured host first, as in the preview below
        host = ctx.cfg.registry.registry or (ctx.repository.registry if ctx.repository else None)
        return render_refresh_job(ctx.cfg, registry_host=host)

    host_hint = ctx.cfg.registry.registry or (f"<{ctx.cfg.registry.repository}>" if ctx.cfg.registry.repository else None)
    preview = render_refresh_job(ctx.cfg, registry_host=host_hint)

    names: List[str] = []
    prev: List[str] = list(after)
    for idx, obj in enumerate(preview):
        node_name = f"refresh/{obj['kind'].lower()}/{obj['metadata']['name']}"
        graph.add(ResourceNode(
            name=node_name,
            kind=f"k8s:{obj['kind']}",
            apply=submit(ctx, node_name, lambda idx=idx: _render()[idx]),
            depends_on=list(prev),
            layer=LAYER_REFRESH,
        ))
        names.append(node_name)
        prev = [node_name]
    return names
