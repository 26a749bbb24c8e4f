"""
Geospatial clustering of historical route-crossover points.

Both clusterers work in great-circle kilometres: agglomerative clustering on a
precomputed haversine matrix cut at a distance threshold, and DBSCAN with the
haversine metric (radians) as an alternative.
"""

import numpy as np
from sklearn.cluster import DBSCAN, AgglomerativeClustering

from relaymatch.registry import HUB_CLUSTERER_REGISTRY, register_hub_clusterer
from relaymatch.utils.geo import EARTH_RADIUS_KM, haversine_matrix
from relaymatch.utils.logging import RelayMatchLogger

logger = RelayMatchLogger.get_logger(__name__)


@register_hub_clusterer("agglomerative")
class AgglomerativeHubClusterer:
    """Average-linkage agglomerative clustering cut at ``distance_km``."""

    def fit(self, coords: np.ndarray, *, distance_km: float) -> list[int]:
        coords = np.ascontiguousarray(coords, dtype=np.float64)
        if len(coords) == 0:
            return []
        if len(coords) == 1:
            return [0]
        distances = haversine_matrix(coords)
        model = AgglomerativeClustering(
            n_clusters=None,
            metric="precomputed",
            linkage="average",
            distance_threshold=distance_km,
        )
        labels = model.fit_predict(distances)
        return [int(label) for label in labels]


@register_hub_clusterer("dbscan")
class DBSCANHubClusterer:
    """Density-based clustering; sparse crossovers are labelled ``-1``."""

    def __init__(self, min_samples: int = 5):
        self.min_samples = min_samples

    def fit(self, coords: np.ndarray, *, distance_km: float) -> list[int]:
        coords = np.ascontiguousarray(coords, dtype=np.float64)
        if len(coords) == 0:
            return []
        model = DBSCAN(
            eps=distance_km / EARTH_RADIUS_KM,
            min_samples=self.min_samples,
            metric="haversine",
            algorithm="ball_tree",
        )
        labels = model.fit_predict(np.radians(coords))
        return [int(label) for label in labels]


def cluster_crossovers(coords: np.ndarray, method: str, distance_km: float) -> list[int]:
    """Cluster ``(n, 2)`` lat/lon crossover points with a registered clusterer."""
    clusterer_class = HUB_CLUSTERER_REGISTRY.get(method)
    if clusterer_class is None:
        logger.error(f"Unknown hub clustering method: {method}")
        raise ValueError(f"Unknown hub clustering method: {method}")
    clusterer = clusterer_class()
    labels = clusterer.fit(coords, distance_km=distance_km)
    n_clusters = len({label for label in labels if label >= 0})
    logger.debug(f"{method} grouped {len(labels)} crossovers into {n_clusters} clusters")
    return labels
