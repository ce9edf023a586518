"""Entry point for `python -m kexporter`.

Usage:
    python -m kexporter
    KEXPORTER_CONFIG_FILE=/etc/kexporter/config.yaml python -m kexporter
"""

from __future__ import annotations

from kexporter.app import run

run()
