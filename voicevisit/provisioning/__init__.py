"""Realtime session provisioning for signed-in patients."""

__all__ = [
    "router",
]
