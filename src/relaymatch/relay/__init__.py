"""
Relay planning for multi-leg hauls through Smart Hubs.
"""

from .planner import RelayPlanner, check_chaining

__all__ = ["RelayPlanner", "check_chaining"]
