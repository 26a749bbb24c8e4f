"""
Smart Hub selection from route-crossover history.
"""

from .clustering import AgglomerativeHubClusterer, DBSCANHubClusterer, cluster_crossovers
from .selector import (
    CrossoverCluster,
    HubSelector,
    amenity_share,
    facility_suitability,
    hub_id_for,
    rank_hubs,
    summarize_clusters,
)

__all__ = [
    "AgglomerativeHubClusterer",
    "DBSCANHubClusterer",
    "CrossoverCluster",
    "HubSelector",
    "amenity_share",
    "cluster_crossovers",
    "facility_suitability",
    "hub_id_for",
    "rank_hubs",
    "summarize_clusters",
]
