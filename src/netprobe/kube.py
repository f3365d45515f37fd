"""Kubernetes client loading and the retry policy for control-plane calls."""

from __future__ import annotations

import logging

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from urllib3.exceptions import ProtocolError

logger = logging.getLogger(__name__)

# Status codes the API server uses for throttling and transient outages
TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

API_RETRY_ATTEMPTS = 3


def load_kube_config(kubeconfig_path: str | None = None, context: str | None = None) -> client.Configuration:
    """
    Build a client configuration without touching the process-wide default.

    An explicit kubeconfig or context always wins. Otherwise the in-cluster
    service account is used when present, then the default kubeconfig.
    """
    cfg = client.Configuration()
    if not kubeconfig_path and not context:
        try:
            config.load_incluster_config(client_configuration=cfg)
            logger.debug("Using in-cluster configuration")
            return cfg
        except config.ConfigException:
            pass
    config.load_kube_config(
        config_file=str(kubeconfig_path) if kubeconfig_path else None,
        context=context,
        client_configuration=cfg,
    )
    logger.debug("Using kubeconfig %s (context %s)", kubeconfig_path or "default", context or "current")
    return cfg


def core_api(cfg: client.Configuration) -> client.CoreV1Api:
    """Build a CoreV1Api with its own ApiClient."""
    return client.CoreV1Api(client.ApiClient(cfg))


def is_transient(exc: BaseException) -> bool:
    """Return True for API errors worth retrying (throttling, 5xx, dropped connections)."""
    if isinstance(exc, ApiException):
        return exc.status in TRANSIENT_STATUS_CODES
    return isinstance(exc, (ConnectionError, TimeoutError, ProtocolError))


# Applied to create/get/list/delete calls only; exec is never retried.
api_retry = retry(
    retry=retry_if_exception(is_transient),
    stop=stop_after_attempt(API_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    before_sleep=before_sleep_log(logger, logging.DEBUG),
    reraise=True,
)
