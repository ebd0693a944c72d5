"""Ingress Controller: reconcile ingress rules and service endpoints into a data-plane routing config."""

__version__ = "0.1.0"

# Lazy imports to avoid loading the kubernetes client for CLI usage
__all__ = [
    "IngressController",
    "ReconciliationEngine",
    "EndpointCache",
    "ControllerConfig",
    "RoutingConfig",
]


def __getattr__(name):
    if name == "IngressController":
        from .controller import IngressController
        return IngressController
    elif name == "ReconciliationEngine":
        from .engine import ReconciliationEngine
        return ReconciliationEngine
    elif name == "EndpointCache":
        from .cache import EndpointCache
        return EndpointCache
    elif name == "ControllerConfig":
        from .models import ControllerConfig
        return ControllerConfig
    elif name == "RoutingConfig":
        from .models import RoutingConfig
        return RoutingConfig
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
