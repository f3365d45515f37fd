"""Probe manager: validate → build → create → wait ready → exec → release."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from kubernetes import client

from netprobe.config import Settings, get_settings
from netprobe.kube import core_api, load_kube_config
from netprobe.probes.cleanup import OrphanSweeper
from netprobe.probes.errors import (
    ExecTimeout,
    ProbeCancelled,
    ProbeError,
    SchedulingTimeout,
    ValidationError,
)
from netprobe.probes.exec_stream import READ_SLICE_SECONDS, ExecOutcome, ExecStreamer
from netprobe.probes.lifecycle import PodLifecycle
from netprobe.probes.models import PodHandle, ProbeRequest, ProbeResult, ProbeState
from netprobe.probes.spec_builder import build_probe_pod, validate_probe

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Extra time the exec worker gets to report its own timeout with partial output
EXEC_GRACE_SECONDS = READ_SLICE_SECONDS + 0.5

StateObserver = Callable[[str, ProbeState], None]


class ProbeManager:
    """
    Runs probes in single-use pods and bounds how many run at once.

    ``execute`` only raises ValidationError; every other failure is reported in
    the returned ProbeResult. Once a pod exists its deletion is requested on
    every exit path, including task cancellation.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        core: client.CoreV1Api | None = None,
        exec_api_factory: Callable[[], client.CoreV1Api] | None = None,
        observer: StateObserver | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        opts = self.settings
        if core is None or exec_api_factory is None:
            cfg = load_kube_config(str(opts.kubeconfig) if opts.kubeconfig else None, opts.context)
            core = core or core_api(cfg)
            exec_api_factory = exec_api_factory or (lambda: core_api(cfg))

        self._lifecycle = PodLifecycle(
            core,
            poll_interval=opts.poll_interval_seconds,
            max_poll_interval=opts.max_poll_interval_seconds,
            delete_timeout=opts.delete_timeout_seconds,
        )
        self._exec = ExecStreamer(exec_api_factory, output_limit=opts.output_limit_bytes)
        self._gate = asyncio.Semaphore(opts.max_concurrent_probes)
        self._active = 0
        self._namespaces: set[str] = {opts.probe_namespace}
        self._observer = observer
        self._sweeper = OrphanSweeper(
            self._lifecycle,
            namespaces=lambda: tuple(self._namespaces),
            ttl_seconds=opts.orphan_ttl_seconds,
            interval_seconds=opts.cleanup_interval_seconds,
        )

    # -- lifecycle of the manager itself --

    def start(self) -> None:
        """Start the background orphan sweep (needs a running event loop)."""
        self._sweeper.start()

    async def aclose(self) -> None:
        await self._sweeper.stop()

    async def __aenter__(self) -> ProbeManager:
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def active_probes(self) -> int:
        """Probes currently holding a slot (between create and release)."""
        return self._active

    @property
    def sweeper(self) -> OrphanSweeper:
        return self._sweeper

    def effective_timeout(self, requested: float | None) -> float:
        """Requested timeout clamped to the ceiling; the ceiling when none is requested."""
        ceiling = self.settings.max_timeout_seconds
        if requested is None:
            return ceiling
        return min(float(requested), ceiling)

    # -- execution --

    def _validate(self, request: ProbeRequest) -> tuple[str, float]:
        namespace = (request.namespace or "").strip() or self.settings.probe_namespace
        validate_probe(namespace, request.command)
        if request.timeout_seconds is not None and request.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive")
        return namespace, self.effective_timeout(request.timeout_seconds)

    async def execute(self, request: ProbeRequest, cancel: asyncio.Event | None = None) -> ProbeResult:
        """
        Run one probe and return its result.

        ``cancel`` lets the caller abandon the probe: the pod is released and
        the result reports the cancellation. Cancelling the surrounding task
        also releases the pod, then re-raises CancelledError.
        """
        namespace, timeout = self._validate(request)
        started = time.monotonic()
        deadline = started + timeout
        pod = build_probe_pod(
            namespace,
            request.command,
            kind=request.kind,
            image=self.settings.probe_image,
            hold_seconds=timeout,
        )

        try:
            await self._acquire_slot(deadline, cancel, timeout)
        except ProbeError as e:
            return self._failed(request, namespace, started, e)

        self._active += 1
        logger.debug("Acquired probe slot (%d/%d)", self._active, self.settings.max_concurrent_probes)
        try:
            return await self._run_pod(request, pod, namespace, started, deadline, cancel)
        finally:
            self._active -= 1
            self._gate.release()

    async def _acquire_slot(self, deadline: float, cancel: asyncio.Event | None, timeout: float) -> None:
        acquiring = asyncio.ensure_future(self._gate.acquire())
        try:
            await self._bounded(
                acquiring,
                deadline,
                cancel,
                lambda: SchedulingTimeout(f"no probe slot became free within {timeout:g}s"),
            )
        except BaseException:
            # The acquire can complete in the same tick the caller is cancelled.
            if acquiring.done() and not acquiring.cancelled() and acquiring.exception() is None:
                self._gate.release()
            raise

    async def _run_pod(
        self,
        request: ProbeRequest,
        pod: client.V1Pod,
        namespace: str,
        started: float,
        deadline: float,
        cancel: asyncio.Event | None,
    ) -> ProbeResult:
        if cancel is not None and cancel.is_set():
            return self._failed(request, namespace, started, ProbeCancelled("probe cancelled"))

        self._namespaces.add(namespace)
        creating = asyncio.ensure_future(asyncio.to_thread(self._lifecycle.create, pod))
        try:
            handle = await asyncio.shield(creating)
        except asyncio.CancelledError:
            # The create call may still land; wait for it so the pod can be released.
            settled = await self._settle(creating)
            if settled is not None:
                await self._release(settled)
            raise
        except ProbeError as e:
            return self._failed(request, namespace, started, e)

        self._transition(handle.name, ProbeState.CREATED)
        try:
            outcome = await self._probe(handle, request, deadline, cancel)
        except ProbeError as e:
            result = self._failed(request, namespace, started, e, pod_name=handle.name)
        else:
            self._transition(handle.name, ProbeState.COMPLETED)
            result = ProbeResult(
                success=True,
                output=outcome.output,
                duration=time.monotonic() - started,
                kind=request.kind,
                namespace=namespace,
                pod_name=handle.name,
                exit_code=outcome.exit_code,
                truncated=outcome.truncated,
            )
        finally:
            await self._release(handle)

        self._transition(handle.name, ProbeState.TERMINAL)
        return result

    async def _probe(
        self,
        handle: PodHandle,
        request: ProbeRequest,
        deadline: float,
        cancel: asyncio.Event | None,
    ) -> ExecOutcome:
        if cancel is not None and cancel.is_set():
            raise ProbeCancelled("probe cancelled")

        await self._bounded(
            self._lifecycle.wait_ready(
                handle,
                deadline,
                on_scheduled=lambda node: self._transition(handle.name, ProbeState.SCHEDULED, node=node),
            ),
            deadline + READ_SLICE_SECONDS,
            cancel,
            lambda: SchedulingTimeout(f"probe pod {handle.name} not ready before deadline"),
        )
        self._transition(handle.name, ProbeState.READY)

        self._transition(handle.name, ProbeState.EXECUTING)
        stop = threading.Event()
        try:
            return await self._bounded(
                asyncio.to_thread(self._exec.run, handle, request.command, deadline, stop),
                deadline + EXEC_GRACE_SECONDS,
                cancel,
                lambda: ExecTimeout("probe command timed out before exiting"),
            )
        finally:
            stop.set()

    async def _bounded(
        self,
        aw: Awaitable[T],
        deadline: float,
        cancel: asyncio.Event | None,
        on_timeout: Callable[[], ProbeError],
    ) -> T:
        """Await ``aw`` until it finishes, the deadline passes, or ``cancel`` is set."""
        task = asyncio.ensure_future(aw)
        waiters: set[asyncio.Future[Any]] = {task}
        cancel_waiter = None
        if cancel is not None:
            cancel_waiter = asyncio.ensure_future(cancel.wait())
            waiters.add(cancel_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=max(deadline - time.monotonic(), 0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        if cancel_waiter is not None and cancel_waiter in done:
            raise ProbeCancelled("probe cancelled")
        raise on_timeout()

    async def _release(self, handle: PodHandle) -> None:
        loop = asyncio.get_running_loop()
        # Submitted to the executor right away so the delete goes out even if
        # this task is cancelled while waiting for it.
        releasing = loop.run_in_executor(None, self._lifecycle.release, handle)
        self._transition(handle.name, ProbeState.CLEANUP_ISSUED)
        await asyncio.shield(releasing)

    @staticmethod
    async def _settle(creating: asyncio.Future[PodHandle]) -> PodHandle | None:
        try:
            return await creating
        except ProbeError:
            return None

    def _failed(
        self,
        request: ProbeRequest,
        namespace: str,
        started: float,
        error: ProbeError,
        pod_name: str | None = None,
    ) -> ProbeResult:
        kind = type(error).__name__
        logger.info("Probe %s in %s failed (%s): %s", request.kind.value, namespace, kind, error.message)
        return ProbeResult(
            success=False,
            output=error.output,
            error=error.message,
            duration=time.monotonic() - started,
            kind=request.kind,
            namespace=namespace,
            pod_name=pod_name,
            error_kind=kind,
        )

    def _transition(self, pod_name: str, state: ProbeState, **detail: Any) -> None:
        logger.debug("Probe pod %s -> %s %s", pod_name, state.value, detail or "")
        if self._observer is not None:
            self._observer(pod_name, state)
