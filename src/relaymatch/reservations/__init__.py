"""
Holds, acceptance and expiry of matches.
"""

from .commit import MatchCommitter
from .manager import TERMINAL_STATES, ReservationManager, utc_now

__all__ = ["MatchCommitter", "ReservationManager", "TERMINAL_STATES", "utc_now"]
