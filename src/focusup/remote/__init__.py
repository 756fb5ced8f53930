"""
Remote store access.
"""

from focusup.remote.client import RemoteStore

__all__ = ["RemoteStore"]
