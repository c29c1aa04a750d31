# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/provision/address.py

from __future__ import annotations

import logging
import threading
from typing import Dict

from anchorage.provision.models import StaticAddress

log = logging.getLogger("anchorage")

_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(allocation_id: str) -> threading.Lock:
    with _locks_guard:
        return _locks.setdefault(allocation_id, threading.Lock())


class StaticAddressBinder:
    """
    Points an elastic IP at an instance.

    The address is never reallocated here, only (re)associated. Binding to the
    instance that already holds it is a no-op; binding elsewhere moves it, and
    the last bind wins. Binds of the same allocation are serialized within
    this process.
    """

    def __init__(self, provider):
        self.provider = provider

    def bind(self, address: StaticAddress, instance_id: str) -> StaticAddress:
        with _lock_for(address.allocation_id):
            current = self.provider.describe_address(address.allocation_id)
            if current.instance_id == instance_id:
                log.info("[address] %s already bound to %s", current.ip, instance_id)
                return current

            if current.instance_id:
                log.warning(
                    "[address] Moving %s from %s to %s", current.ip, current.instance_id, instance_id,
                )
            else:
                log.info("[address] Binding %s to %s", current.ip, instance_id)

            association_id = self.provider.associate_address(address.allocation_id, instance_id)
            return StaticAddress(
                allocation_id=current.allocation_id,
                ip=current.ip,
                association_id=association_id,
                instance_id=instance_id,
            )
