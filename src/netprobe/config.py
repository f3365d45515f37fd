"""Configuration and environment for netprobe."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Seconds a probe pod's holder process outlives the probe deadline
HOLD_SLACK_SECONDS = 30


class Settings(BaseSettings):
    """Probe settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="NETPROBE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; uses KUBECONFIG env or default location if unset",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")

    # Probe pods
    probe_namespace: str = Field(
        default="netprobe-diagnostics",
        description="Namespace for probe pods when a request does not name one",
    )
    probe_image: str = Field(
        default="nicolaka/netshoot:latest",
        description="Diagnostic image shared by all probe kinds (needs sh, nc, nslookup, curl)",
    )
    max_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Ceiling for a single probe; longer requested timeouts are clamped",
    )
    max_concurrent_probes: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Number of probes that may hold a pod at the same time",
    )
    output_limit_bytes: int = Field(
        default=1024 * 1024,
        ge=1024,
        description="Captured output ceiling; the rest is discarded with a truncation marker",
    )

    # Readiness polling
    poll_interval_seconds: float = Field(default=0.25, gt=0, description="First readiness poll delay")
    max_poll_interval_seconds: float = Field(default=2.0, gt=0, description="Readiness poll backoff cap")

    # Cleanup
    delete_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Request timeout for pod deletion",
    )
    orphan_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Age after which the background sweep deletes a leftover probe pod",
    )
    cleanup_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="How often the background sweep runs",
    )

    log_level: str = Field(default="INFO", description="Log level for the CLI")

    @model_validator(mode="after")
    def check_orphan_ttl(self) -> Settings:
        # The sweep must never reach a pod whose probe can still be running.
        longest = self.max_timeout_seconds + HOLD_SLACK_SECONDS
        if self.orphan_ttl_seconds <= longest:
            raise ValueError(
                f"orphan_ttl_seconds ({self.orphan_ttl_seconds:g}) must exceed "
                f"max_timeout_seconds + {HOLD_SLACK_SECONDS} ({longest:g})"
            )
        return self


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
