"""API route handlers."""
from . import fx, refresh, snapshots

__all__ = ["fx", "refresh", "snapshots"]
