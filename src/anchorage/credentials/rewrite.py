# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/credentials/rewrite.py

from __future__ import annotations

import logging

from anchorage.errors import LoopbackEndpointNotFoundError

log = logging.getLogger("anchorage")

DEFAULT_LOOPBACK_ENDPOINT = "https://127.0.0.1:6443"


def endpoint_for(address: str, port: int = 6443) -> str:
    return f"https://{address}:{port}"


def count_occurrences(artifact: str, from_endpoint: str) -> int:
    if not from_endpoint:
        return 0
    return artifact.count(from_endpoint)


def rewrite(artifact: str, from_endpoint: str, to_address: str) -> str:
    """
    Replace every literal occurrence of from_endpoint with to_address.

    Plain substring replacement: nothing is interpreted as a pattern, and all
    other bytes are left as they are. Returns the input unchanged when there is
    nothing to replace.
    """
    if not from_endpoint:
        return artifact
    return artifact.replace(from_endpoint, to_address)


def rewrite_credential(
    artifact: str,
    from_endpoint: str,
    to_address: str,
    *,
    strict: bool = True,
) -> tuple[str, int]:
    """
    Rewrite a fetched kubeconfig and report how many endpoints were replaced.

    A kubeconfig without the loopback endpoint means k3s bound the API server
    somewhere unexpected. With strict=True that is an error; otherwise it is
    logged and the artifact passes through untouched.
    """
    n = count_occurrences(artifact, from_endpoint)
    if n == 0:
        if strict:
            raise LoopbackEndpointNotFoundError(
                f"Fetched kubeconfig does not contain '{from_endpoint}'; "
                "the API server may be bound to an unexpected address"
            )
        log.warning("[rewrite] '%s' not found in kubeconfig, leaving it unchanged", from_endpoint)
        return artifact, 0
    return rewrite(artifact, from_endpoint, to_address), n
