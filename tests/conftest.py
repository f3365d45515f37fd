"""
Shared pytest fixtures for netprobe tests.

Provides:
- FakeCoreV1Api: in-memory pods API that records every call
- FakeExecStream / ExecScript: stand-in for the pods/exec websocket client
- settings and manager fixtures wired to both
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from netprobe.config import Settings
from netprobe.probes import ProbeManager, ProbeState

# =============================================================================
# Pods API
# =============================================================================


def running_status() -> client.V1PodStatus:
    return client.V1PodStatus(
        phase="Running",
        conditions=[client.V1PodCondition(type="Ready", status="True")],
        container_statuses=[
            client.V1ContainerStatus(
                name="probe",
                ready=True,
                restart_count=0,
                image="probe-image",
                image_id="probe-image@sha256:abc",
                state=client.V1ContainerState(running=client.V1ContainerStateRunning()),
            )
        ],
    )


def pending_status(reason: str = "ContainerCreating") -> client.V1PodStatus:
    return client.V1PodStatus(
        phase="Pending",
        container_statuses=[
            client.V1ContainerStatus(
                name="probe",
                ready=False,
                restart_count=0,
                image="probe-image",
                image_id="",
                state=client.V1ContainerState(
                    waiting=client.V1ContainerStateWaiting(reason=reason, message=f"{reason} message"),
                ),
            )
        ],
    )


def unschedulable_status() -> client.V1PodStatus:
    return client.V1PodStatus(
        phase="Pending",
        conditions=[
            client.V1PodCondition(
                type="PodScheduled",
                status="False",
                reason="Unschedulable",
                message="0/3 nodes are available",
            )
        ],
    )


class FakeCoreV1Api:
    """
    In-memory CoreV1Api covering the pod calls netprobe makes.

    ``behavior`` controls what reads report after creation:
    ``ready`` (pending once, then running), ``unschedulable``, ``image_pull``
    and ``vanish`` (pod disappears).
    Setting ``create_blocker`` holds create calls until the event is set.
    """

    def __init__(self, namespaces: tuple[str, ...] = ("default", "netprobe-test")) -> None:
        self.namespaces = set(namespaces)
        self.behavior = "ready"
        self.pods: dict[tuple[str, str], client.V1Pod] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.reads: dict[str, int] = {}
        self.create_errors: list[Exception] = []
        self.delete_errors: list[Exception] = []
        self.list_errors: list[Exception] = []
        self.create_blocker: threading.Event | None = None
        self.alive = 0
        self.peak_alive = 0
        self._lock = threading.Lock()

    def _record(self, op: str, namespace: str, name: str) -> None:
        with self._lock:
            self.calls.append((op, namespace, name))

    def ops(self, op: str) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] == op]

    def create_namespaced_pod(self, namespace: str, body: client.V1Pod, **kwargs: Any) -> client.V1Pod:
        self._record("create", namespace, body.metadata.name)
        if self.create_blocker is not None:
            self.create_blocker.wait(5)
        if self.create_errors:
            raise self.create_errors.pop(0)
        if namespace not in self.namespaces:
            raise ApiException(status=404, reason="Not Found")
        if (namespace, body.metadata.name) in self.pods:
            raise ApiException(status=409, reason="AlreadyExists")
        with self._lock:
            body.metadata.creation_timestamp = datetime.now(timezone.utc)
            body.status = client.V1PodStatus(phase="Pending")
            self.pods[(namespace, body.metadata.name)] = body
            self.alive += 1
            self.peak_alive = max(self.peak_alive, self.alive)
        return body

    def read_namespaced_pod(self, name: str, namespace: str, **kwargs: Any) -> client.V1Pod:
        self._record("read", namespace, name)
        pod = self.pods.get((namespace, name))
        if pod is None or self.behavior == "vanish":
            raise ApiException(status=404, reason="Not Found")
        count = self.reads[name] = self.reads.get(name, 0) + 1
        if self.behavior == "unschedulable":
            pod.status = unschedulable_status()
        elif self.behavior == "image_pull":
            pod.spec.node_name = "node-1"
            pod.status = pending_status("ErrImagePull")
        else:
            pod.spec.node_name = "node-1"
            pod.status = pending_status() if count == 1 else running_status()
        return pod

    def delete_namespaced_pod(self, name: str, namespace: str, **kwargs: Any) -> None:
        self._record("delete", namespace, name)
        if self.delete_errors:
            raise self.delete_errors.pop(0)
        with self._lock:
            if self.pods.pop((namespace, name), None) is None:
                raise ApiException(status=404, reason="Not Found")
            self.alive -= 1

    def list_namespaced_pod(self, namespace: str, label_selector: str | None = None, **kwargs: Any) -> Any:
        self._record("list", namespace, label_selector or "")
        if self.list_errors:
            raise self.list_errors.pop(0)
        items = [pod for (ns, _), pod in self.pods.items() if ns == namespace]
        return MagicMock(items=items)


# =============================================================================
# Exec websocket
# =============================================================================


@dataclass
class ExecScript:
    """What the next exec calls should produce."""

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    returncode: int = 0
    hang: bool = False
    delay: float = 0.0
    error: Exception | None = None
    open_error: Exception | None = None
    commands: list[list[str]] = field(default_factory=list)
    streams: list[FakeExecStream] = field(default_factory=list)


class FakeExecStream:
    """Mimics the WSClient returned by kubernetes.stream.stream(..., _preload_content=False)."""

    def __init__(self, script: ExecScript) -> None:
        self._script = script
        self._stdout = list(script.stdout)
        self._stderr = list(script.stderr)
        self._out = ""
        self._err = ""
        self._open = True
        self._started = time.monotonic()
        self.closed = False

    def is_open(self) -> bool:
        return self._open

    def update(self, timeout: float = 0) -> None:
        if self._script.error is not None:
            raise self._script.error
        if time.monotonic() - self._started < self._script.delay:
            time.sleep(min(timeout, 0.02))
            return
        if self._stdout:
            self._out += self._stdout.pop(0)
        if self._stderr:
            self._err += self._stderr.pop(0)
        if not self._stdout and not self._stderr:
            if self._script.hang:
                # output so far is delivered, the process never exits
                time.sleep(min(timeout, 0.02))
            else:
                self._open = False

    def peek_stdout(self) -> bool:
        return bool(self._out)

    def read_stdout(self) -> str:
        out, self._out = self._out, ""
        return out

    def peek_stderr(self) -> bool:
        return bool(self._err)

    def read_stderr(self) -> str:
        err, self._err = self._err, ""
        return err

    @property
    def returncode(self) -> int | None:
        return None if self._open else self._script.returncode

    def close(self) -> None:
        self.closed = True
        self._open = False


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_core() -> FakeCoreV1Api:
    return FakeCoreV1Api()


@pytest.fixture
def exec_script(monkeypatch: pytest.MonkeyPatch) -> ExecScript:
    """Route exec_stream.stream() to FakeExecStream driven by the returned script."""
    script = ExecScript()

    def fake_stream(api_method: Any, name: str, namespace: str, **kwargs: Any) -> FakeExecStream:
        if script.open_error is not None:
            raise script.open_error
        script.commands.append(list(kwargs["command"]))
        ws = FakeExecStream(script)
        script.streams.append(ws)
        return ws

    monkeypatch.setattr("netprobe.probes.exec_stream.stream", fake_stream)
    return script


@pytest.fixture
def settings() -> Settings:
    return Settings(
        probe_namespace="netprobe-test",
        probe_image="probe-image",
        max_timeout_seconds=2.0,
        max_concurrent_probes=5,
        output_limit_bytes=4096,
        poll_interval_seconds=0.01,
        max_poll_interval_seconds=0.05,
        delete_timeout_seconds=1.0,
    )


@pytest.fixture
def states() -> list[tuple[str, ProbeState]]:
    return []


@pytest.fixture
def manager(settings: Settings, fake_core: FakeCoreV1Api, exec_script: ExecScript, states: list) -> ProbeManager:
    return ProbeManager(
        settings,
        core=fake_core,
        exec_api_factory=MagicMock,
        observer=lambda pod, state: states.append((pod, state)),
    )
