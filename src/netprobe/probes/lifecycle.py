"""Create probe pods, wait for them to become executable, and delete them."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportHTTPError

from netprobe.kube import api_retry
from netprobe.probes.errors import CleanupFailure, SchedulingError, SchedulingTimeout
from netprobe.probes.models import (
    LABEL_MANAGED_BY,
    LABEL_MANAGED_BY_VALUE,
    PROBE_CONTAINER,
    PROBE_LABEL_SELECTOR,
    PodHandle,
)

logger = logging.getLogger(__name__)

# Container waiting reasons that will not resolve on their own within a probe deadline
FATAL_WAITING_REASONS = frozenset(
    {
        "ErrImagePull",
        "ImagePullBackOff",
        "InvalidImageName",
        "ErrImageNeverPull",
        "CreateContainerConfigError",
        "CreateContainerError",
        "CrashLoopBackOff",
        "RunContainerError",
    }
)

# Per-request timeout for get/create calls
API_REQUEST_TIMEOUT = 10

_API_ERRORS = (ApiException, TransportHTTPError, OSError)


def _api_reason(exc: BaseException) -> str:
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}"
    return str(exc) or type(exc).__name__


def _container_status(pod: Any) -> Any | None:
    for cs in getattr(pod.status, "container_statuses", None) or []:
        if cs.name == PROBE_CONTAINER:
            return cs
    return None


def readiness(pod: Any) -> tuple[str, str]:
    """
    Classify a pod for the probe lifecycle.

    Returns ``(state, detail)`` where state is ``ready``, ``pending`` or
    ``failed``; detail explains pending and failed states.
    """
    status = pod.status
    phase = getattr(status, "phase", None) or "Pending"
    if phase in ("Succeeded", "Failed"):
        reason = getattr(status, "reason", None) or getattr(status, "message", None) or ""
        return "failed", f"pod finished before the probe ran (phase={phase}{', ' + reason if reason else ''})"

    cs = _container_status(pod)
    if cs is not None and cs.state is not None:
        if cs.state.waiting and cs.state.waiting.reason in FATAL_WAITING_REASONS:
            message = cs.state.waiting.message or ""
            return "failed", f"container {cs.state.waiting.reason}: {message}".rstrip(": ")
        if cs.state.terminated:
            term = cs.state.terminated
            return "failed", f"container terminated before the probe ran (reason={term.reason}, exit_code={term.exit_code})"

    if phase == "Running" and cs is not None and cs.ready:
        return "ready", ""

    for cond in getattr(status, "conditions", None) or []:
        if cond.type == "PodScheduled" and cond.status == "False":
            return "pending", f"{cond.reason or 'Unscheduled'}: {cond.message or ''}".rstrip(": ")
    if cs is not None and cs.state is not None and cs.state.waiting:
        return "pending", cs.state.waiting.reason or "waiting"
    return "pending", phase


class PodLifecycle:
    """Create, observe and delete probe pods through CoreV1Api."""

    def __init__(
        self,
        core: client.CoreV1Api,
        poll_interval: float = 0.25,
        max_poll_interval: float = 2.0,
        delete_timeout: float = 10.0,
    ) -> None:
        self._core = core
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.delete_timeout = delete_timeout

    # -- raw API calls (retried on throttling and 5xx) --

    @api_retry
    def _create_pod(self, pod: client.V1Pod) -> Any:
        return self._core.create_namespaced_pod(
            namespace=pod.metadata.namespace,
            body=pod,
            _request_timeout=API_REQUEST_TIMEOUT,
        )

    @api_retry
    def _read_pod(self, name: str, namespace: str) -> Any:
        return self._core.read_namespaced_pod(
            name=name,
            namespace=namespace,
            _request_timeout=API_REQUEST_TIMEOUT,
        )

    @api_retry
    def delete_pod(self, name: str, namespace: str) -> None:
        self._core.delete_namespaced_pod(
            name=name,
            namespace=namespace,
            grace_period_seconds=0,
            body=client.V1DeleteOptions(grace_period_seconds=0, propagation_policy="Background"),
            _request_timeout=self.delete_timeout,
        )

    @api_retry
    def list_probe_pods(self, namespace: str) -> list[Any]:
        pods = self._core.list_namespaced_pod(
            namespace=namespace,
            label_selector=PROBE_LABEL_SELECTOR,
            _request_timeout=API_REQUEST_TIMEOUT,
        )
        return list(pods.items)

    # -- lifecycle --

    def create(self, pod: client.V1Pod) -> PodHandle:
        """Submit the pod. Raises SchedulingError if the API server rejects it."""
        name = pod.metadata.name
        namespace = pod.metadata.namespace
        try:
            created = self._create_pod(pod)
        except ApiException as e:
            if e.status == 409 and self._is_ours(name, namespace):
                # A retried create whose first attempt went through
                logger.debug("Adopting already created probe pod %s/%s", namespace, name)
                try:
                    created = self._read_pod(name, namespace)
                except _API_ERRORS as err:
                    raise SchedulingError(
                        f"failed to read existing probe pod {namespace}/{name}: {_api_reason(err)}"
                    ) from err
            else:
                raise SchedulingError(f"failed to create probe pod in namespace {namespace!r}: {_api_reason(e)}") from e
        except (TransportHTTPError, OSError) as e:
            raise SchedulingError(f"failed to create probe pod in namespace {namespace!r}: {_api_reason(e)}") from e

        container = pod.spec.containers[0]
        created_at = getattr(created.metadata, "creation_timestamp", None) or datetime.now(timezone.utc)
        logger.debug("Created probe pod %s/%s", namespace, name)
        return PodHandle(
            name=created.metadata.name or name,
            namespace=namespace,
            image=container.image,
            command=tuple(container.command or ()),
            created_at=created_at,
            phase=getattr(created.status, "phase", None) or "Pending",
        )

    def _is_ours(self, name: str, namespace: str) -> bool:
        try:
            existing = self._read_pod(name, namespace)
        except _API_ERRORS:
            return False
        labels = existing.metadata.labels or {}
        return labels.get(LABEL_MANAGED_BY) == LABEL_MANAGED_BY_VALUE

    async def wait_ready(
        self,
        handle: PodHandle,
        deadline: float,
        on_scheduled: Callable[[str], None] | None = None,
    ) -> PodHandle:
        """
        Poll until the probe container is running and ready.

        ``deadline`` is a ``time.monotonic()`` value. Raises SchedulingError on
        a terminal failure and SchedulingTimeout when the deadline passes.
        Each sleep between polls is a cancellation point.
        """
        delay = self.poll_interval
        detail = handle.phase
        while True:
            try:
                pod = await asyncio.to_thread(self._read_pod, handle.name, handle.namespace)
            except ApiException as e:
                if e.status == 404:
                    raise SchedulingError(f"probe pod {handle.name} disappeared before becoming ready") from e
                raise SchedulingError(f"failed to read probe pod {handle.name}: {_api_reason(e)}") from e
            except (TransportHTTPError, OSError) as e:
                raise SchedulingError(f"failed to read probe pod {handle.name}: {_api_reason(e)}") from e

            handle.phase = getattr(pod.status, "phase", None) or handle.phase
            node = getattr(pod.spec, "node_name", None) if pod.spec is not None else None
            if node and on_scheduled is not None:
                on_scheduled(node)
                on_scheduled = None
            state, detail = readiness(pod)
            if state == "ready":
                logger.debug("Probe pod %s/%s is ready", handle.namespace, handle.name)
                return handle
            if state == "failed":
                raise SchedulingError(f"probe pod {handle.name} failed: {detail}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise SchedulingTimeout(f"probe pod {handle.name} not ready before deadline (last state: {detail})")
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self.max_poll_interval)

    def release(self, handle: PodHandle) -> bool:
        """
        Delete the probe pod with zero grace period.

        Never raises: a failed deletion is logged and left to the orphan sweep.
        Returns True when the pod is deleted or already gone.
        """
        try:
            self.delete_pod(handle.name, handle.namespace)
        except ApiException as e:
            if e.status == 404:
                logger.debug("Probe pod %s/%s already gone", handle.namespace, handle.name)
                return True
            failure = CleanupFailure(f"failed to delete probe pod {handle.namespace}/{handle.name}: {_api_reason(e)}")
            logger.warning("%s", failure.message)
            return False
        except (TransportHTTPError, OSError) as e:
            failure = CleanupFailure(f"failed to delete probe pod {handle.namespace}/{handle.name}: {_api_reason(e)}")
            logger.warning("%s", failure.message)
            return False
        logger.debug("Deleted probe pod %s/%s", handle.namespace, handle.name)
        return True
