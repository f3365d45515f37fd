"""Build the ephemeral pod definition for a probe."""

from __future__ import annotations

import json
import math
import secrets
from collections.abc import Sequence
from datetime import datetime, timezone

from kubernetes import client

from netprobe.config import HOLD_SLACK_SECONDS
from netprobe.probes.errors import ValidationError
from netprobe.probes.models import (
    ANNOTATION_COMMAND,
    ANNOTATION_CREATED_AT,
    LABEL_MANAGED_BY,
    LABEL_MANAGED_BY_VALUE,
    LABEL_PROBE_KIND,
    PROBE_CONTAINER,
    ProbeKind,
)

PROBE_RUN_AS_USER = 1000

# Writable /tmp for tools that spool output (the root filesystem is read-only)
SCRATCH_SIZE = "8Mi"

PROBE_RESOURCES = client.V1ResourceRequirements(
    requests={"cpu": "50m", "memory": "32Mi"},
    limits={"cpu": "100m", "memory": "64Mi"},
)


def probe_pod_name(kind: ProbeKind) -> str:
    """Return a pod name that is unique per call."""
    return f"netprobe-{kind.value}-{secrets.token_hex(5)}"


def validate_probe(namespace: str, command: Sequence[str]) -> None:
    """Raise ValidationError unless namespace and command are usable."""
    if not namespace or not namespace.strip():
        raise ValidationError("namespace is required")
    if not command:
        raise ValidationError("command is required")
    if any(not isinstance(arg, str) or arg == "" for arg in command):
        raise ValidationError("command arguments must be non-empty strings")


def _security_context() -> client.V1SecurityContext:
    return client.V1SecurityContext(
        run_as_non_root=True,
        run_as_user=PROBE_RUN_AS_USER,
        allow_privilege_escalation=False,
        read_only_root_filesystem=True,
        capabilities=client.V1Capabilities(drop=["ALL"]),
        seccomp_profile=client.V1SeccompProfile(type="RuntimeDefault"),
    )


def build_probe_pod(
    namespace: str,
    command: Sequence[str],
    *,
    kind: ProbeKind,
    image: str,
    hold_seconds: float,
    now: datetime | None = None,
) -> client.V1Pod:
    """
    Build a single-use probe pod. No cluster calls are made.

    The container only holds a bounded ``sleep`` so the pod stays executable;
    the diagnostic command is run once through the exec sub-resource. The
    sleep ends on its own shortly after the deadline, so a pod that escapes
    deletion still stops consuming resources.
    """
    validate_probe(namespace, command)
    created = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    hold = int(math.ceil(hold_seconds)) + HOLD_SLACK_SECONDS

    container = client.V1Container(
        name=PROBE_CONTAINER,
        image=image,
        command=["sleep", str(hold)],
        resources=PROBE_RESOURCES,
        security_context=_security_context(),
        volume_mounts=[client.V1VolumeMount(name="tmp", mount_path="/tmp")],
    )
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=probe_pod_name(kind),
            namespace=namespace,
            labels={
                LABEL_MANAGED_BY: LABEL_MANAGED_BY_VALUE,
                LABEL_PROBE_KIND: kind.value,
            },
            annotations={
                ANNOTATION_CREATED_AT: created.isoformat().replace("+00:00", "Z"),
                ANNOTATION_COMMAND: json.dumps(list(command)),
            },
        ),
        spec=client.V1PodSpec(
            restart_policy="Never",
            automount_service_account_token=False,
            termination_grace_period_seconds=0,
            active_deadline_seconds=hold,
            containers=[container],
            volumes=[
                client.V1Volume(name="tmp", empty_dir=client.V1EmptyDirVolumeSource(size_limit=SCRATCH_SIZE)),
            ],
        ),
    )
