# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/anchorage/utils/ssh_runner.py

from __future__ import annotations

import logging
import socket
import threading
import time
from typing import Optional

import paramiko

from anchorage.bootstrap.models import Host

log = logging.getLogger("anchorage")


class SSHCommandError(RuntimeError):
    pass


class SSHDeadlineExceeded(SSHCommandError):
    pass


class SSHCancelled(SSHCommandError):
    pass


class SSHRunner:
    def __init__(self, client: paramiko.SSHClient):
        self.client = client

    def stream(
        self,
        cmd: str,
        *,
        deadline: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        poll_interval: float = 0.2,
    ) -> tuple[int, str, str]:
        """
        Run cmd and drain its output while it executes.

        deadline is a time.monotonic() value; once it passes, or once cancel is
        set, the channel is closed and SSHDeadlineExceeded / SSHCancelled is
        raised. Returns (rc, stdout, stderr).
        """
        stdin, stdout, stderr = self.client.exec_command(cmd)
        channel = stdout.channel

        out_chunks: list[str] = []
        err_chunks: list[str] = []

        while not channel.exit_status_ready():
            if cancel is not None and cancel.is_set():
                channel.close()
                raise SSHCancelled(f"cancelled while running: {cmd.splitlines()[0]}")
            if deadline is not None and time.monotonic() > deadline:
                channel.close()
                raise SSHDeadlineExceeded(f"deadline exceeded while running: {cmd.splitlines()[0]}")
            if channel.recv_ready():
                out_chunks.append(channel.recv(4096).decode("utf-8", "replace"))
            if channel.recv_stderr_ready():
                err_chunks.append(channel.recv_stderr(4096).decode("utf-8", "replace"))
            time.sleep(poll_interval)

        rc = channel.recv_exit_status()
        out_chunks.append(stdout.read().decode("utf-8", "replace"))
        err_chunks.append(stderr.read().decode("utf-8", "replace"))
        return rc, "".join(out_chunks), "".join(err_chunks)

    def close(self) -> None:
        self.client.close()


def quote(s: str) -> str:
    """Single-quote s for bash."""
    return "'" + s.replace("'", "'\"'\"'") + "'"


def open_ssh(
    host: Host,
    *,
    connect_timeout: float = 30.0,
) -> SSHRunner:
    """
    Open a key-authenticated SSH connection. Never falls back to agent keys,
    ~/.ssh keys or passwords: the deployment key is the only identity.
    """
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    client.connect(
        hostname=host.address,
        port=host.port,
        username=host.username,
        pkey=host.pkey,
        password=None,
        look_for_keys=False,
        allow_agent=False,
        timeout=connect_timeout,
        banner_timeout=connect_timeout,
        auth_timeout=connect_timeout,
    )

    return SSHRunner(client)


def wait_for_port(
    address: str,
    port: int = 22,
    *,
    attempts: int = 30,
    interval: float = 10.0,
    timeout: float = 5.0,
) -> int:
    """
    Block until address:port accepts a TCP connection. Returns the attempt
    number that succeeded; raises TimeoutError after the last attempt.
    """
    last_err: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            with socket.create_connection((address, port), timeout=timeout):
                return attempt
        except OSError as e:
            last_err = e
            if attempt == attempts:
                break
            log.info(
                "[ssh] %s:%d not reachable (attempt %d/%d, %s), retrying in %ss...",
                address, port, attempt, attempts, e, interval,
            )
            time.sleep(interval)
    raise TimeoutError(
        f"{address}:{port} did not accept connections after {attempts} attempts: {last_err}"
    )
