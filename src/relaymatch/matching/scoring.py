"""
Candidate scoring.

A score is a weighted mean of five components, each mapped onto ``[0, 1]``,
reported on a 0-100 scale:

deadhead
    Empty miles avoided relative to the vehicle returning home empty.
    ``0.5`` is break-even; avoiding as many empty miles as the load is long
    maps to ``1``.
tightness
    Smallest remaining buffer across pickup, handoff and delivery windows
    relative to ``tightness_reference_hours``.  Tight schedules score low.
earnings
    Linehaul rate minus per-km operating cost over all driven distance,
    relative to ``earnings_reference``.
network_balance
    Forecast imbalance: delivering into an undersupplied cell and leaving an
    oversupplied one both help.  ``0.5`` is neutral (also used when no
    forecaster is configured).
hub_utilization
    For relays, the mean of ``suitability x spare exchange capacity`` of the
    hubs used; direct hauls are neutral at ``0.5``.

Scoring is pure: the same candidate, load, snapshot, weights and forecaster
always produce the same score.
"""

from dataclasses import dataclass, replace

from relaymatch.config.params import ScoringParams
from relaymatch.core_types import Candidate, CandidateKind, FleetSnapshot, Load
from relaymatch.interfaces import DemandForecaster
from relaymatch.utils.geo import cell_for, km_to_miles

NEUTRAL = 0.5


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class ScoreBreakdown:
    deadhead: float
    tightness: float
    earnings: float
    network_balance: float
    hub_utilization: float
    total: float

    def as_dict(self) -> dict[str, float]:
        return {
            "deadhead": self.deadhead,
            "tightness": self.tightness,
            "earnings": self.earnings,
            "network_balance": self.network_balance,
            "hub_utilization": self.hub_utilization,
            "total": self.total,
        }


class Scorer:
    def __init__(
        self,
        params: ScoringParams | None = None,
        forecaster: DemandForecaster | None = None,
        cell_size_deg: float = 1.0,
    ):
        self.params = params or ScoringParams()
        self.forecaster = forecaster
        self.cell_size_deg = cell_size_deg

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def deadhead_component(self, candidate: Candidate) -> float:
        haul_miles = km_to_miles(candidate.total_loaded_km)
        if haul_miles <= 0:
            return NEUTRAL
        avoided_ratio = -candidate.empty_miles_delta / haul_miles
        return _clamp((avoided_ratio + 1.0) / 2.0)

    def tightness_component(self, candidate: Candidate) -> float:
        slack = min(leg.slack_hours for leg in candidate.legs)
        return _clamp(slack / self.params.tightness_reference_hours)

    def earnings_component(self, candidate: Candidate, load: Load) -> float:
        driven_km = candidate.total_loaded_km + candidate.total_deadhead_km
        net = load.rate - self.params.operating_cost_per_km * driven_km
        return _clamp(net / self.params.earnings_reference)

    def balance_component(self, candidate: Candidate, load: Load) -> float:
        if self.forecaster is None:
            return NEUTRAL
        origin = self.forecaster.forecast(
            cell_for(load.origin, self.cell_size_deg), candidate.picked_up_at
        )
        destination = self.forecaster.forecast(
            cell_for(load.destination, self.cell_size_deg), candidate.delivered_at
        )
        # Low-confidence forecasts pull the bonus towards neutral
        gain = destination.balance * destination.confidence - origin.balance * origin.confidence
        return _clamp(NEUTRAL + gain / (4.0 * self.params.balance_reference))

    def hub_component(self, candidate: Candidate, snapshot: FleetSnapshot) -> float:
        if candidate.kind != CandidateKind.RELAY or not candidate.hub_ids:
            return NEUTRAL
        values = []
        for hub_id in candidate.hub_ids:
            hub = snapshot.hubs.get(hub_id)
            if hub is None or hub.capacity <= 0:
                values.append(0.0)
                continue
            spare = _clamp(1.0 - snapshot.hub_usage.get(hub_id, 0) / hub.capacity)
            values.append(hub.suitability * spare)
        return sum(values) / len(values)

    # ------------------------------------------------------------------
    # Combined
    # ------------------------------------------------------------------

    def breakdown(self, candidate: Candidate, load: Load, snapshot: FleetSnapshot) -> ScoreBreakdown:
        w = self.params.weights
        parts = {
            "deadhead": self.deadhead_component(candidate),
            "tightness": self.tightness_component(candidate),
            "earnings": self.earnings_component(candidate, load),
            "network_balance": self.balance_component(candidate, load),
            "hub_utilization": self.hub_component(candidate, snapshot),
        }
        weighted = (
            w.deadhead * parts["deadhead"]
            + w.tightness * parts["tightness"]
            + w.earnings * parts["earnings"]
            + w.network_balance * parts["network_balance"]
            + w.hub_utilization * parts["hub_utilization"]
        )
        total = round(100.0 * weighted / w.total(), 6)
        return ScoreBreakdown(total=total, **parts)

    def score(self, candidate: Candidate, load: Load, snapshot: FleetSnapshot) -> float:
        return self.breakdown(candidate, load, snapshot).total

    def score_all(
        self, candidates: list[Candidate], load: Load, snapshot: FleetSnapshot
    ) -> list[Candidate]:
        """Scored copies of ``candidates``, best first (ties by candidate id)."""
        scored = [replace(c, score=self.score(c, load, snapshot)) for c in candidates]
        scored.sort(key=lambda c: (-c.score, c.candidate_id))
        return scored
