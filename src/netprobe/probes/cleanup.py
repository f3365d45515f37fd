"""Periodic removal of probe pods left behind by crashed processes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportHTTPError

from netprobe.probes.lifecycle import PodLifecycle
from netprobe.probes.models import ANNOTATION_CREATED_AT

logger = logging.getLogger(__name__)


def pod_created_at(pod: Any) -> datetime | None:
    """Creation time from the probe annotation, else from metadata."""
    raw = (pod.metadata.annotations or {}).get(ANNOTATION_CREATED_AT)
    if raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable %s on %s: %r", ANNOTATION_CREATED_AT, pod.metadata.name, raw)
    ts = pod.metadata.creation_timestamp
    if ts is None:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class OrphanSweeper:
    """Deletes probe-labeled pods older than a TTL, independently of any request."""

    def __init__(
        self,
        lifecycle: PodLifecycle,
        namespaces: Callable[[], Iterable[str]],
        ttl_seconds: float = 300.0,
        interval_seconds: float = 60.0,
    ) -> None:
        self._lifecycle = lifecycle
        self._namespaces = namespaces
        self.ttl_seconds = ttl_seconds
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    def sweep_once(self, now: datetime | None = None) -> int:
        """Delete expired probe pods in all tracked namespaces. Returns how many were deleted."""
        now = now or datetime.now(timezone.utc)
        cleaned = 0
        for ns in sorted(set(self._namespaces())):
            try:
                pods = self._lifecycle.list_probe_pods(ns)
            except (ApiException, TransportHTTPError, OSError) as e:
                logger.debug("Orphan sweep could not list pods in %s: %s", ns, e)
                continue
            for pod in pods:
                created = pod_created_at(pod)
                if created is None or (now - created).total_seconds() <= self.ttl_seconds:
                    continue
                try:
                    self._lifecycle.delete_pod(pod.metadata.name, ns)
                except ApiException as e:
                    if e.status != 404:
                        logger.warning("Orphan sweep failed to delete %s/%s: %s", ns, pod.metadata.name, e.reason)
                    continue
                except (TransportHTTPError, OSError) as e:
                    logger.warning("Orphan sweep failed to delete %s/%s: %s", ns, pod.metadata.name, e)
                    continue
                cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d orphaned probe pod(s)", cleaned)
        return cleaned

    async def _loop(self) -> None:
        while True:
            await asyncio.to_thread(self.sweep_once)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        """Start the background task; the first sweep runs immediately."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="netprobe-orphan-sweep")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
