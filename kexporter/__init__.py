"""kexporter: export Kubernetes events to multiple destinations with routing and filtering."""

__version__ = "0.3.0"
