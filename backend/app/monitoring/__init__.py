"""Monitoring helpers and the metric registry for the signaling server."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
