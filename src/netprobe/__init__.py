"""netprobe: ephemeral in-cluster network probes for Kubernetes diagnostics."""

__version__ = "0.1.0"
