"""Error taxonomy for the matching engine."""


class RelayMatchError(Exception):
    """Base class for all engine errors."""


class InfeasibleInstance(RelayMatchError):
    """No feasible candidate exists for a load; the load stays open."""

    def __init__(self, load_id: str, reason: str = "no feasible candidate"):
        self.load_id = load_id
        self.reason = reason
        super().__init__(f"Load {load_id}: {reason}")


class Conflict(RelayMatchError):
    """A hold or accept lost against an existing held/accepted match."""

    def __init__(self, message: str, conflicting_match_id: str | None = None):
        self.conflicting_match_id = conflicting_match_id
        super().__init__(message)


class Expired(RelayMatchError):
    """A hold's held-until time elapsed before it was accepted."""

    def __init__(self, match_id: str):
        self.match_id = match_id
        super().__init__(f"Match {match_id} hold has expired")


class StaleState(RelayMatchError):
    """Vehicle or hub state changed since the candidate was generated."""

    def __init__(self, candidate_id: str, reason: str):
        self.candidate_id = candidate_id
        self.reason = reason
        super().__init__(f"Candidate {candidate_id} is stale: {reason}")


class SolverTimeout(RelayMatchError):
    """The exact solver exceeded its wall-clock budget."""


class MatchNotFound(RelayMatchError, KeyError):
    def __init__(self, match_id: str):
        self.match_id = match_id
        super().__init__(f"Match {match_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class FeedUnavailable(RelayMatchError):
    """The vehicle/load snapshot feed is missing or too old to optimize over."""


class ConfigurationError(RelayMatchError, ValueError):
    """Invalid configuration values or files."""
