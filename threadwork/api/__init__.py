"""
API module initialization
"""

from threadwork.api import hooks, status

__all__ = ["hooks", "status"]
