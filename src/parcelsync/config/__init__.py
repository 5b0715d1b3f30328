"""
Configuration for the sync engine.
"""

from .config_loader import SyncConfig

__all__ = ["SyncConfig"]
