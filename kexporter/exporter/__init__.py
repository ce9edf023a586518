"""Delivery layer: the receiver registry."""

from kexporter.exporter.registry import ReceiverRegistry

__all__ = ["ReceiverRegistry"]
