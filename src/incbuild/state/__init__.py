"""Persistence of build snapshots."""

from .store import BuildStateStore

__all__ = ["BuildStateStore"]
