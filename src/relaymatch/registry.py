"""Registry for pluggable components in relaymatch."""

from .interfaces import DemandForecaster, HubClusterer, SolverAdapter

# Registries for each component type
HUB_CLUSTERER_REGISTRY: dict[str, type[HubClusterer]] = {}
FORECASTER_REGISTRY: dict[str, type[DemandForecaster]] = {}
SOLVER_ADAPTER_REGISTRY: dict[str, type[SolverAdapter]] = {}

__all__ = [
    "register_hub_clusterer",
    "register_forecaster",
    "register_solver_adapter",
    # Expose registries for advanced users who need direct access
    "HUB_CLUSTERER_REGISTRY",
    "FORECASTER_REGISTRY",
    "SOLVER_ADAPTER_REGISTRY",
]


def register_hub_clusterer(name: str):
    """Decorator to register a hub clusterer implementation."""

    def decorator(cls: type[HubClusterer]):
        if name in HUB_CLUSTERER_REGISTRY:
            raise ValueError(f"Hub clusterer '{name}' is already registered")
        HUB_CLUSTERER_REGISTRY[name] = cls
        return cls

    return decorator


def register_forecaster(name: str):
    """Decorator to register a demand forecaster implementation."""

    def decorator(cls: type[DemandForecaster]):
        if name in FORECASTER_REGISTRY:
            raise ValueError(f"Forecaster '{name}' is already registered")
        FORECASTER_REGISTRY[name] = cls
        return cls

    return decorator


def register_solver_adapter(name: str):
    """Decorator to register a solver adapter implementation."""

    def decorator(cls: type[SolverAdapter]):
        if name in SOLVER_ADAPTER_REGISTRY:
            raise ValueError(f"Solver adapter '{name}' is already registered")
        SOLVER_ADAPTER_REGISTRY[name] = cls
        return cls

    return decorator
