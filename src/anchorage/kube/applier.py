# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/kube/applier.py
from __future__ import annotations

import logging
import time
from typing import Iterable, Optional

from kubernetes import client, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import (
    DynamicApiError,
    NotFoundError,
    ResourceNotFoundError,
)

from anchorage.errors import AnchorageError

log = logging.getLogger("anchorage")


class KubeApplyError(AnchorageError):
    """The API server rejected a manifest."""


class CRDNotReadyError(AnchorageError):
    """A CustomResourceDefinition never reported Established."""


def _ident(manifest: dict) -> str:
    meta = manifest.get("metadata", {})
    ns = meta.get("namespace")
    name = meta.get("name")
    return f"{manifest.get('kind')}/{ns}/{name}" if ns else f"{manifest.get('kind')}/{name}"


class KubeApplier:
    """
    Create-or-patch for arbitrary manifests, including custom resources.

    An object that does not exist is created; one that does is merge-patched
    with the full manifest. Either way the call returns only after the API
    server has acknowledged the object, and the returned value is its uid.
    """

    def __init__(self, api_client: client.ApiClient, *, dyn: Optional[dynamic.DynamicClient] = None):
        self.api_client = api_client
        self._dyn = dyn

    @property
    def dyn(self) -> dynamic.DynamicClient:
        if self._dyn is None:
            self._dyn = dynamic.DynamicClient(self.api_client)
        return self._dyn

    def _resource(self, manifest: dict):
        api_version = manifest["apiVersion"]
        kind = manifest["kind"]
        try:
            return self.dyn.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError:
            # kinds registered by a CRD installed during this run
            self.dyn.resources.invalidate_cache()
            try:
                return self.dyn.resources.get(api_version=api_version, kind=kind)
            except ResourceNotFoundError as e:
                raise KubeApplyError(f"API server does not serve {api_version}/{kind}") from e

    def apply(self, manifest: dict) -> Optional[str]:
        res = self._resource(manifest)
        meta = manifest["metadata"]
        name = meta["name"]
        ns = meta.get("namespace") if res.namespaced else None
        ident = _ident(manifest)

        try:
            try:
                res.get(name=name, namespace=ns)
            except NotFoundError:
                obj = res.create(body=manifest, namespace=ns)
                log.info("[kube] created %s", ident)
            else:
                obj = res.patch(
                    body=manifest,
                    name=name,
                    namespace=ns,
                    content_type="application/merge-patch+json",
                )
                log.info("[kube] patched %s", ident)
        except DynamicApiError as e:
            raise KubeApplyError(f"Apply of {ident} rejected: {e.summary()}") from e

        return obj.metadata.uid

    def wait_for_crds(
        self,
        names: Iterable[str],
        *,
        attempts: int = 60,
        interval: float = 5.0,
    ) -> None:
        """Block until each named CRD has condition Established=True."""
        ext = client.ApiextensionsV1Api(self.api_client)
        for name in names:
            for attempt in range(1, attempts + 1):
                try:
                    crd = ext.read_custom_resource_definition(name)
                    conditions = (crd.status.conditions or []) if crd.status else []
                    if any(c.type == "Established" and c.status == "True" for c in conditions):
                        log.info("[kube] CRD %s established", name)
                        break
                except ApiException as e:
                    if e.status != 404:
                        raise KubeApplyError(f"Reading CRD {name} failed: {e.reason}") from e
                if attempt == attempts:
                    raise CRDNotReadyError(
                        f"CRD {name} not established after {attempts} attempts"
                    )
                time.sleep(interval)
