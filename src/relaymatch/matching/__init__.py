"""
Candidate generation and scoring.
"""

from .candidates import (
    CandidateGenerator,
    direct_candidate_id,
    generate_batch,
    generate_candidates,
    is_compatible,
    pre_score,
    relay_candidate_id,
)
from .scoring import ScoreBreakdown, Scorer

__all__ = [
    "CandidateGenerator",
    "ScoreBreakdown",
    "Scorer",
    "direct_candidate_id",
    "generate_batch",
    "generate_candidates",
    "is_compatible",
    "pre_score",
    "relay_candidate_id",
]
