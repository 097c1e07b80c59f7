"""Metric registry and chat/sweeper metric definitions."""

from . import metrics
from .registry import MetricsRegistry, registry

__all__ = ["MetricsRegistry", "metrics", "registry"]
