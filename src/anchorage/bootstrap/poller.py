# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/bootstrap/poller.py

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import paramiko

from anchorage.bootstrap.models import Host, ProbeSpec
from anchorage.errors import (
    BootstrapCancelledError,
    BootstrapConnectionError,
    BootstrapTimeoutError,
)
from anchorage.observers.dispatcher import EventBus
from anchorage.observers.events import (
    BootstrapPollFailed,
    BootstrapPollStarted,
    BootstrapPollSucceeded,
)
from anchorage.utils.ssh_runner import (
    SSHCancelled,
    SSHDeadlineExceeded,
    SSHRunner,
    open_ssh,
    quote,
)

log = logging.getLogger("anchorage")


def _fmt_seconds(v: float) -> str:
    return f"{v:g}"


def build_probe_script(spec: ProbeSpec) -> str:
    """
    Shell loop run on the instance: check for a non-empty file up to
    spec.retries times, sleeping spec.interval_seconds after each miss, so a
    file that never appears costs spec.budget_seconds. Prints the file and
    exits 0 as soon as it exists; prints a diagnostic to stderr and exits 1
    when the attempts run out. Read-only, so safe to re-run.
    """
    path = quote(spec.path)
    sudo = "sudo -n " if spec.use_sudo else ""
    interval = _fmt_seconds(spec.interval_seconds)
    return (
        "i=1\n"
        f"while [ \"$i\" -le {spec.retries} ]; do\n"
        f"  if {sudo}test -s {path}; then\n"
        f"    {sudo}cat {path}\n"
        "    exit 0\n"
        "  fi\n"
        f"  sleep {interval}\n"
        "  i=$((i + 1))\n"
        "done\n"
        f"echo \"anchorage: {spec.path} did not appear after {spec.retries} attempts "
        f"({interval}s apart)\" >&2\n"
        "exit 1\n"
    )


class RemoteBootstrapPoller:
    """
    Fetches the kubeconfig k3s writes once the boot script has finished.

    One SSH channel per fetch. Waiting happens inside the remote loop; this
    class never reconnects or re-runs the probe. The local wait is bounded by
    the remote budget plus grace_seconds and can be cut short with a
    threading.Event.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = 30.0,
        grace_seconds: float = 30.0,
        poll_interval: float = 0.2,
        connector: Callable[..., SSHRunner] = open_ssh,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.connect_timeout = connect_timeout
        self.grace_seconds = grace_seconds
        self.poll_interval = poll_interval
        self._connector = connector
        self.bus = bus or EventBus()
        self.run_ctx = run_ctx or {}

    def _emit(self, event_cls, **fields) -> None:
        if self.run_ctx:
            self.bus.emit(event_cls(**fields, **self.run_ctx))

    def _fail(self, host: Host, err: Exception) -> Exception:
        self._emit(BootstrapPollFailed, host=host.address, error=str(err))
        return err

    def fetch(
        self,
        host: Host,
        spec: ProbeSpec,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> str:
        self._emit(
            BootstrapPollStarted,
            host=host.address,
            path=spec.path,
            retries=spec.retries,
            interval_s=spec.interval_seconds,
        )
        log.info(
            "[bootstrap] Waiting for %s on %s (up to %d attempts, %ss apart)",
            spec.path, host.address, spec.retries, _fmt_seconds(spec.interval_seconds),
        )

        try:
            ssh = self._connector(host, connect_timeout=self.connect_timeout)
        except (paramiko.SSHException, OSError) as e:
            raise self._fail(host, BootstrapConnectionError(
                f"Could not open SSH channel to {host.username}@{host.address}:{host.port}: {e}"
            )) from e

        deadline = time.monotonic() + spec.budget_seconds + self.grace_seconds
        try:
            rc, out, err = ssh.stream(
                f"bash -c {quote(build_probe_script(spec))}",
                deadline=deadline,
                cancel=cancel,
                poll_interval=self.poll_interval,
            )
        except SSHCancelled as e:
            raise self._fail(host, BootstrapCancelledError(str(e))) from e
        except SSHDeadlineExceeded as e:
            raise self._fail(host, BootstrapTimeoutError(
                f"Gave up waiting for {spec.path} on {host.address} after "
                f"{_fmt_seconds(spec.budget_seconds + self.grace_seconds)}s",
            )) from e
        except (paramiko.SSHException, OSError) as e:
            raise self._fail(host, BootstrapConnectionError(
                f"SSH channel to {host.address} failed mid-probe: {e}"
            )) from e
        finally:
            ssh.close()

        if rc != 0:
            diagnostic = err.strip()
            raise self._fail(host, BootstrapTimeoutError(
                f"Bootstrap probe on {host.address} failed (exit {rc}): {diagnostic}",
                exit_code=rc,
                diagnostic=err,
            ))

        self._emit(BootstrapPollSucceeded, host=host.address, bytes=len(out))
        log.info("[bootstrap] Fetched %s from %s (%d bytes)", spec.path, host.address, len(out))
        return out
