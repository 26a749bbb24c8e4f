"""
Demand forecasting for network balance.
"""

import pandas as pd

from relaymatch.config.params import ForecastParams
from relaymatch.interfaces import DemandForecaster
from relaymatch.registry import FORECASTER_REGISTRY

from .historical import HISTORY_COLUMNS, HistoricalDemandForecaster, bucket_floor


def build_forecaster(
    history: pd.DataFrame | None, params: ForecastParams | None = None
) -> DemandForecaster:
    """Instantiate the forecaster named by ``params.method``."""
    params = params or ForecastParams()
    forecaster_class = FORECASTER_REGISTRY.get(params.method)
    if forecaster_class is None:
        raise ValueError(
            f"Unknown forecast method: {params.method}. "
            f"Available: {sorted(FORECASTER_REGISTRY)}"
        )
    return forecaster_class(history, params)


__all__ = [
    "HISTORY_COLUMNS",
    "HistoricalDemandForecaster",
    "bucket_floor",
    "build_forecaster",
]
