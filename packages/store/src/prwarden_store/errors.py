from __future__ import annotations


class StoreError(Exception):
    """Base class for persistence failures."""


class StateLockedError(StoreError):
    """Another process holds the exclusive lock on a state file."""
