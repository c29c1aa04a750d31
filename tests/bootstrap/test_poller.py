import subprocess
import threading
import time
from pathlib import Path

import paramiko
import pytest

from anchorage.bootstrap.models import Host, ProbeSpec
from anchorage.bootstrap.poller import RemoteBootstrapPoller, build_probe_script
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
    new_ctx,
)
from anchorage.utils.ssh_runner import SSHCancelled, SSHDeadlineExceeded, SSHRunner

HOST = Host(address="203.0.113.10", username="ubuntu")


# ----------------- Probe script, run locally with bash -----------------

def _run_probe(spec: ProbeSpec, tmp_path: Path, sleep_body: str = ":"):
    """Run the probe with `sleep` replaced by a shell function that counts ticks."""
    ticks = tmp_path / "ticks"
    prelude = f'sleep() {{ echo tick >> "{ticks}"; {sleep_body}; }}\n'
    cp = subprocess.run(
        ["bash", "-c", prelude + build_probe_script(spec)],
        capture_output=True, text=True, timeout=30,
    )
    n = len(ticks.read_text().splitlines()) if ticks.exists() else 0
    return cp, n


def test_probe_returns_file_when_present(tmp_path: Path):
    target = tmp_path / "k3s.yaml"
    target.write_text("server: https://127.0.0.1:6443\n")

    cp, ticks = _run_probe(ProbeSpec(path=str(target), retries=5, interval_seconds=0, use_sudo=False), tmp_path)

    assert cp.returncode == 0
    assert cp.stdout == "server: https://127.0.0.1:6443\n"
    assert ticks == 0


def test_probe_fails_after_exact_retry_budget(tmp_path: Path):
    target = tmp_path / "never.yaml"

    cp, ticks = _run_probe(ProbeSpec(path=str(target), retries=4, interval_seconds=0, use_sudo=False), tmp_path)

    assert cp.returncode == 1
    assert cp.stdout == ""
    assert "did not appear after 4 attempts" in cp.stderr
    # one sleep per miss, so the full retries x interval budget is spent
    assert ticks == 4


def test_probe_waits_until_file_appears(tmp_path: Path):
    target = tmp_path / "late.yaml"
    body = f'[ "$(wc -l < "{tmp_path / "ticks"}")" -ge 2 ] && echo ready > "{target}"'

    cp, ticks = _run_probe(
        ProbeSpec(path=str(target), retries=10, interval_seconds=0, use_sudo=False), tmp_path, sleep_body=body,
    )

    assert cp.returncode == 0
    assert cp.stdout == "ready\n"
    assert ticks == 2


def test_probe_ignores_empty_file(tmp_path: Path):
    target = tmp_path / "empty.yaml"
    target.write_text("")

    cp, _ = _run_probe(ProbeSpec(path=str(target), retries=2, interval_seconds=0, use_sudo=False), tmp_path)

    assert cp.returncode == 1


def test_probe_uses_sudo_when_asked():
    script = build_probe_script(ProbeSpec(path="/etc/rancher/k3s/k3s.yaml"))
    assert "sudo -n test -s '/etc/rancher/k3s/k3s.yaml'" in script
    assert "sudo -n cat '/etc/rancher/k3s/k3s.yaml'" in script


# ----------------- Poller against a fake SSH runner -----------------

class FakeRunner:
    def __init__(self, result=None, exc=None):
        self.result = result or (0, "kubeconfig-text", "")
        self.exc = exc
        self.commands = []
        self.deadline = None
        self.closed = False

    def stream(self, cmd, *, deadline=None, cancel=None, poll_interval=0.2):
        self.commands.append(cmd)
        self.deadline = deadline
        if self.exc:
            raise self.exc
        return self.result

    def close(self):
        self.closed = True


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def _poller(runner, **kw):
    return RemoteBootstrapPoller(connector=lambda host, connect_timeout: runner, **kw)


def test_fetch_returns_artifact_and_closes_channel():
    runner = FakeRunner()
    out = _poller(runner).fetch(HOST, ProbeSpec(retries=2, interval_seconds=0))

    assert out == "kubeconfig-text"
    assert runner.closed
    assert len(runner.commands) == 1
    assert runner.commands[0].startswith("bash -c ")


def test_fetch_deadline_covers_remote_budget_plus_grace():
    runner = FakeRunner()
    before = time.monotonic()
    _poller(runner, grace_seconds=30).fetch(HOST, ProbeSpec(retries=20, interval_seconds=5))
    assert runner.deadline - before >= 130 - 1


def test_nonzero_exit_is_timeout_with_remote_diagnostic():
    runner = FakeRunner(result=(1, "", "anchorage: /etc/rancher/k3s/k3s.yaml did not appear after 3 attempts (0s apart)\n"))

    with pytest.raises(BootstrapTimeoutError) as ei:
        _poller(runner).fetch(HOST, ProbeSpec(retries=3, interval_seconds=0))

    assert ei.value.exit_code == 1
    assert "did not appear after 3 attempts" in ei.value.diagnostic
    assert "did not appear" in str(ei.value)
    assert runner.closed


def test_connect_failure_is_connection_error():
    def refuse(host, connect_timeout):
        raise paramiko.SSHException("connection refused")

    with pytest.raises(BootstrapConnectionError):
        RemoteBootstrapPoller(connector=refuse).fetch(HOST, ProbeSpec())


def test_socket_error_is_connection_error():
    def refuse(host, connect_timeout):
        raise OSError("no route to host")

    with pytest.raises(BootstrapConnectionError):
        RemoteBootstrapPoller(connector=refuse).fetch(HOST, ProbeSpec())


def test_cancel_maps_to_cancelled_error():
    runner = FakeRunner(exc=SSHCancelled("cancelled"))
    with pytest.raises(BootstrapCancelledError):
        _poller(runner).fetch(HOST, ProbeSpec())
    assert runner.closed


def test_local_deadline_maps_to_timeout_error():
    runner = FakeRunner(exc=SSHDeadlineExceeded("late"))
    with pytest.raises(BootstrapTimeoutError) as ei:
        _poller(runner).fetch(HOST, ProbeSpec())
    assert ei.value.exit_code is None


def test_events_emitted_with_run_context():
    cap = Capture()
    ctx = new_ctx(env="dev", deployment="demo")
    _poller(FakeRunner(), bus=EventBus([cap]), run_ctx=ctx).fetch(HOST, ProbeSpec(retries=2, interval_seconds=0))

    kinds = [type(e) for e in cap.events]
    assert kinds == [BootstrapPollStarted, BootstrapPollSucceeded]
    assert cap.events[1].bytes == len("kubeconfig-text")


def test_failure_event_emitted():
    cap = Capture()
    ctx = new_ctx(env="dev", deployment="demo")
    with pytest.raises(BootstrapTimeoutError):
        _poller(FakeRunner(result=(1, "", "nope")), bus=EventBus([cap]), run_ctx=ctx).fetch(HOST, ProbeSpec())
    assert isinstance(cap.events[-1], BootstrapPollFailed)


# ----------------- SSHRunner.stream with a fake paramiko channel -----------------

class _FakeChannel:
    def __init__(self, ready_after=2, chunks=(b"abc",), err_chunks=(), rc=0):
        self.ready_after = ready_after
        self.chunks = list(chunks)
        self.err_chunks = list(err_chunks)
        self.rc = rc
        self.polls = 0
        self.closed = False

    def exit_status_ready(self):
        self.polls += 1
        return self.polls > self.ready_after

    def recv_ready(self): return bool(self.chunks)
    def recv(self, n): return self.chunks.pop(0)
    def recv_stderr_ready(self): return bool(self.err_chunks)
    def recv_stderr(self, n): return self.err_chunks.pop(0)
    def recv_exit_status(self): return self.rc
    def close(self): self.closed = True


class _Stream:
    def __init__(self, channel, rest=b""):
        self.channel = channel
        self._rest = rest
    def read(self): return self._rest


class _FakeClient:
    def __init__(self, channel, tail=b"", err_tail=b""):
        self.channel = channel
        self.tail = tail
        self.err_tail = err_tail
    def exec_command(self, cmd, timeout=None):
        return None, _Stream(self.channel, self.tail), _Stream(self.channel, self.err_tail)
    def close(self): pass


def test_stream_drains_output_until_exit():
    ch = _FakeChannel(ready_after=2, chunks=[b"hello "], err_chunks=[b"warn"], rc=0)
    rc, out, err = SSHRunner(_FakeClient(ch, tail=b"world")).stream("cmd", poll_interval=0)
    assert (rc, out, err) == (0, "hello world", "warn")


def test_stream_honours_cancel():
    ch = _FakeChannel(ready_after=10**6)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SSHCancelled):
        SSHRunner(_FakeClient(ch)).stream("cmd", cancel=cancel, poll_interval=0)
    assert ch.closed


def test_stream_honours_deadline():
    ch = _FakeChannel(ready_after=10**6)
    with pytest.raises(SSHDeadlineExceeded):
        SSHRunner(_FakeClient(ch)).stream("cmd", deadline=time.monotonic() - 1, poll_interval=0)
    assert ch.closed
