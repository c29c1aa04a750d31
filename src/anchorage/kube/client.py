# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/kube/client.py
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import yaml
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from anchorage.errors import AnchorageError
from anchorage.utils.files import write_secret

log = logging.getLogger("anchorage")


class ClusterUnreachableError(AnchorageError):
    """The rewritten kubeconfig points at an API server that does not answer."""


def api_client_from_kubeconfig(text: str, *, context: Optional[str] = None) -> client.ApiClient:
    """Build an ApiClient from kubeconfig text without touching ~/.kube/config."""
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise AnchorageError("kubeconfig is not a YAML mapping")
    return config.new_client_from_config_dict(data, context=context, persist_config=False)


def save_kubeconfig(text: str, path: Path) -> Path:
    path = write_secret(path, text)
    log.info("[kube] Wrote kubeconfig to %s", path)
    return path


def wait_for_api(
    api_client: client.ApiClient,
    *,
    attempts: int = 30,
    interval: float = 5.0,
) -> str:
    """
    Poll /version until the API server answers. Returns its git version.
    """
    version_api = client.VersionApi(api_client)
    last: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            info = version_api.get_code()
            log.info("[kube] API server is up (%s)", info.git_version)
            return info.git_version
        except (ApiException, HTTPError, OSError) as e:
            last = e
            if attempt == attempts:
                break
            log.debug("[kube] API not ready (attempt %d/%d): %s", attempt, attempts, e)
            time.sleep(interval)
    raise ClusterUnreachableError(f"API server did not answer after {attempts} attempts: {last}")
