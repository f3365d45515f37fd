"""Run a command inside a ready probe container and capture its output."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

from netprobe.probes.errors import ExecTimeout, ExecTransportError, ProbeCancelled
from netprobe.probes.models import PROBE_CONTAINER, PodHandle

logger = logging.getLogger(__name__)

# Longest blocking read before deadline and cancellation are re-checked
READ_SLICE_SECONDS = 0.5

TRUNCATION_MARKER = "\n... [output truncated at {limit} bytes]"


class OutputBuffer:
    """Accumulates combined stdout/stderr up to a byte ceiling; the rest is dropped."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._data = bytearray()
        self.truncated = False

    def write(self, chunk: str | bytes) -> None:
        if not chunk:
            return
        data = chunk.encode("utf-8", errors="replace") if isinstance(chunk, str) else chunk
        room = self.limit - len(self._data)
        if len(data) > room:
            self.truncated = True
            data = data[: max(room, 0)]
        self._data.extend(data)

    def __len__(self) -> int:
        return len(self._data)

    def text(self) -> str:
        out = self._data.decode("utf-8", errors="replace")
        if self.truncated:
            out += TRUNCATION_MARKER.format(limit=self.limit)
        return out


@dataclass(frozen=True)
class ExecOutcome:
    """Output of a command that ran to exit."""

    output: str
    exit_code: int | None
    truncated: bool


class ExecStreamer:
    """Execute commands through the pods/exec websocket sub-resource."""

    def __init__(
        self,
        api_factory: Callable[[], client.CoreV1Api],
        output_limit: int = 1024 * 1024,
    ) -> None:
        # stream() swaps the request method on the ApiClient it is given, so each
        # exec gets a client of its own instead of sharing the control-plane one.
        self._api_factory = api_factory
        self.output_limit = output_limit

    def _open(self, handle: PodHandle, command: Sequence[str]) -> Any:
        api = self._api_factory()
        return stream(
            api.connect_get_namespaced_pod_exec,
            handle.name,
            handle.namespace,
            container=PROBE_CONTAINER,
            command=list(command),
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            _preload_content=False,
        )

    def run(
        self,
        handle: PodHandle,
        command: Sequence[str],
        deadline: float,
        cancel: threading.Event | None = None,
    ) -> ExecOutcome:
        """
        Run ``command`` in the probe container until it exits.

        Blocking; meant for a worker thread. ``deadline`` is a
        ``time.monotonic()`` value. A non-zero exit code is returned, not
        raised. Raises ExecTimeout or ProbeCancelled with the partial output,
        and ExecTransportError when the channel breaks.
        """
        buf = OutputBuffer(self.output_limit)
        try:
            resp = self._open(handle, command)
        except (ApiException, OSError, ValueError) as e:
            raise ExecTransportError(f"failed to open exec channel to {handle.name}: {e}") from e

        try:
            while resp.is_open():
                if cancel is not None and cancel.is_set():
                    raise ProbeCancelled("probe cancelled", output=buf.text())
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ExecTimeout("probe command timed out before exiting", output=buf.text())
                resp.update(timeout=min(READ_SLICE_SECONDS, remaining))
                self._drain(resp, buf)
            self._drain(resp, buf)
            exit_code = resp.returncode
        except (ExecTimeout, ProbeCancelled):
            raise
        except Exception as e:
            # websocket-client raises its own hierarchy next to OSError and ValueError
            raise ExecTransportError(f"exec channel to {handle.name} failed: {e}", output=buf.text()) from e
        finally:
            try:
                resp.close()
            except Exception:
                logger.debug("Error closing exec channel to %s", handle.name, exc_info=True)

        logger.debug("Exec in %s exited with code %s (%d bytes)", handle.name, exit_code, len(buf))
        return ExecOutcome(output=buf.text(), exit_code=exit_code, truncated=buf.truncated)

    @staticmethod
    def _drain(resp: Any, buf: OutputBuffer) -> None:
        if resp.peek_stdout():
            buf.write(resp.read_stdout())
        if resp.peek_stderr():
            buf.write(resp.read_stderr())
