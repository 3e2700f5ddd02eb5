"""Output adapters - health monitoring."""

from .health_server import HealthServer

__all__ = ['HealthServer']
