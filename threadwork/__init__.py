"""
Threadwork

Persistent project state, token-budget tracking and a forced quality-gate
retry loop for AI coding assistant sessions.
"""

__version__ = "1.0.0"
