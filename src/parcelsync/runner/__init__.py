"""
Runner module for orchestrating sync runs.
"""

from .coordinator import ReconciliationCoordinator

__all__ = ["ReconciliationCoordinator"]
