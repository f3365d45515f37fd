"""Tests for pod creation, readiness polling and release."""

import logging
import time

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from conftest import pending_status, running_status, unschedulable_status
from netprobe.probes import ProbeKind, SchedulingError, SchedulingTimeout
from netprobe.probes.lifecycle import PodLifecycle, readiness
from netprobe.probes.spec_builder import build_probe_pod


def _pod(namespace="default"):
    return build_probe_pod(namespace, ["echo", "hi"], kind=ProbeKind.CONNECTIVITY, image="probe-image", hold_seconds=5)


@pytest.fixture
def lifecycle(fake_core):
    return PodLifecycle(fake_core, poll_interval=0.01, max_poll_interval=0.02)


class TestReadiness:
    def test_running_and_ready(self):
        pod = client.V1Pod(status=running_status())
        assert readiness(pod) == ("ready", "")

    def test_creating_is_pending(self):
        state, detail = readiness(client.V1Pod(status=pending_status()))
        assert state == "pending"
        assert detail == "ContainerCreating"

    def test_unschedulable_is_pending_with_reason(self):
        state, detail = readiness(client.V1Pod(status=unschedulable_status()))
        assert state == "pending"
        assert "Unschedulable" in detail

    @pytest.mark.parametrize("reason", ["ErrImagePull", "ImagePullBackOff", "CrashLoopBackOff"])
    def test_fatal_waiting_reasons(self, reason):
        state, detail = readiness(client.V1Pod(status=pending_status(reason)))
        assert state == "failed"
        assert reason in detail

    @pytest.mark.parametrize("phase", ["Succeeded", "Failed"])
    def test_finished_pod_fails(self, phase):
        state, detail = readiness(client.V1Pod(status=client.V1PodStatus(phase=phase)))
        assert state == "failed"
        assert phase in detail


class TestCreate:
    def test_create_returns_handle(self, lifecycle, fake_core):
        pod = _pod()
        handle = lifecycle.create(pod)
        assert handle.name == pod.metadata.name
        assert handle.namespace == "default"
        assert handle.image == "probe-image"
        assert fake_core.ops("create") == [("create", "default", pod.metadata.name)]

    def test_missing_namespace_is_scheduling_error(self, lifecycle, fake_core):
        with pytest.raises(SchedulingError, match="nonexistent-ns"):
            lifecycle.create(_pod("nonexistent-ns"))
        assert fake_core.pods == {}

    def test_forbidden_is_not_retried(self, lifecycle, fake_core):
        fake_core.create_errors = [ApiException(status=403, reason="Forbidden")]
        with pytest.raises(SchedulingError, match="403"):
            lifecycle.create(_pod())
        assert len(fake_core.ops("create")) == 1

    def test_throttled_create_is_retried(self, lifecycle, fake_core):
        fake_core.create_errors = [ApiException(status=429, reason="Too Many Requests")]
        handle = lifecycle.create(_pod())
        assert len(fake_core.ops("create")) == 2
        assert ("default", handle.name) in fake_core.pods

    def test_conflict_on_own_pod_is_adopted(self, lifecycle, fake_core):
        pod = _pod()
        fake_core.create_namespaced_pod("default", pod)
        handle = lifecycle.create(pod)
        assert handle.name == pod.metadata.name

    def test_conflict_on_pod_that_vanished_is_scheduling_error(self, lifecycle, fake_core, monkeypatch):
        monkeypatch.setattr(lifecycle, "_is_ours", lambda name, namespace: True)
        fake_core.create_errors = [ApiException(status=409, reason="AlreadyExists")]
        with pytest.raises(SchedulingError, match="404"):
            lifecycle.create(_pod())
        assert fake_core.pods == {}


class TestWaitReady:
    @pytest.mark.asyncio
    async def test_becomes_ready(self, lifecycle):
        scheduled = []
        handle = lifecycle.create(_pod())
        ready = await lifecycle.wait_ready(handle, time.monotonic() + 2, on_scheduled=scheduled.append)
        assert ready.phase == "Running"
        assert scheduled == ["node-1"]

    @pytest.mark.asyncio
    async def test_times_out_while_unschedulable(self, lifecycle, fake_core):
        fake_core.behavior = "unschedulable"
        handle = lifecycle.create(_pod())
        started = time.monotonic()
        with pytest.raises(SchedulingTimeout, match="Unschedulable"):
            await lifecycle.wait_ready(handle, started + 0.2)
        assert time.monotonic() - started < 1.0

    @pytest.mark.asyncio
    async def test_image_pull_failure(self, lifecycle, fake_core):
        fake_core.behavior = "image_pull"
        handle = lifecycle.create(_pod())
        with pytest.raises(SchedulingError, match="ErrImagePull"):
            await lifecycle.wait_ready(handle, time.monotonic() + 2)

    @pytest.mark.asyncio
    async def test_pod_vanishes(self, lifecycle, fake_core):
        handle = lifecycle.create(_pod())
        fake_core.behavior = "vanish"
        with pytest.raises(SchedulingError, match="disappeared"):
            await lifecycle.wait_ready(handle, time.monotonic() + 2)


class TestRelease:
    def test_deletes_pod(self, lifecycle, fake_core):
        handle = lifecycle.create(_pod())
        assert lifecycle.release(handle) is True
        assert fake_core.pods == {}
        assert len(fake_core.ops("delete")) == 1

    def test_already_gone_counts_as_released(self, lifecycle, fake_core):
        handle = lifecycle.create(_pod())
        fake_core.pods.clear()
        assert lifecycle.release(handle) is True

    def test_failure_is_logged_not_raised(self, lifecycle, fake_core, caplog):
        handle = lifecycle.create(_pod())
        fake_core.delete_errors = [ApiException(status=403, reason="Forbidden")]
        with caplog.at_level(logging.WARNING, logger="netprobe.probes.lifecycle"):
            assert lifecycle.release(handle) is False
        assert "failed to delete probe pod" in caplog.text

    def test_transient_failure_is_retried(self, lifecycle, fake_core):
        handle = lifecycle.create(_pod())
        fake_core.delete_errors = [ApiException(status=503, reason="Service Unavailable")]
        assert lifecycle.release(handle) is True
        assert len(fake_core.ops("delete")) == 2
