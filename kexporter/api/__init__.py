"""HTTP layer for kexporter.

Exposes:
    create_app -- FastAPI factory serving /metrics, /-/healthy and /-/ready.
"""

from kexporter.api.app import create_app

__all__ = ["create_app"]
