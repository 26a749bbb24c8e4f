"""
Network-wide batch matching: exact assignment with greedy fallback.
"""

from .core import NetworkOptimizer, RunAborted
from .greedy import greedy_order, select_greedy
from .model import build_model, solve_exact

__all__ = [
    "NetworkOptimizer",
    "RunAborted",
    "build_model",
    "greedy_order",
    "select_greedy",
    "solve_exact",
]
