"""
Factory for creating cluster connections and the operator context.

Uses lazy imports to avoid loading unused flavor packages.
Flavors are discovered via hardcoded switch.
"""

from typing import TYPE_CHECKING, Any

from escluster_core.config import OperatorSettings
from escluster_core.context import OperatorContext

if TYPE_CHECKING:
    from escluster_core.db import StateDB
    from escluster_protocols import ConnectionFactory

# Hardcoded list of available cluster flavors
AVAILABLE_FLAVORS = ["elasticsearch"]


def create_connection_factory(flavor: str, **kwargs: Any) -> "ConnectionFactory":
    """
    Create the admin connection factory of a cluster flavor.

    Args:
        flavor: Flavor identifier (e.g., "elasticsearch")
        **kwargs: Flavor-specific configuration (timeouts, etc.)

    Raises:
        ValueError: If flavor is not recognized
    """
    if flavor == "elasticsearch":
        # Lazy import to avoid loading the flavor package unless needed
        from escluster_elasticsearch.factory import connection_factory

        return connection_factory(**kwargs)
    raise ValueError(
        f"Unknown flavor '{flavor}'. Available flavors: {', '.join(AVAILABLE_FLAVORS)}"
    )


def build_context(db: "StateDB", settings: OperatorSettings, flavor: str = "elasticsearch") -> OperatorContext:
    """Wire a local StateDB and a flavor's connections into an OperatorContext."""
    return OperatorContext(
        store=db,
        secrets=db,
        workloads=db,
        connect=create_connection_factory(flavor, timeout=settings.probe_timeout_seconds),
        settings=settings,
    )


def get_available_flavors() -> list[str]:
    """Return list of available flavor names."""
    return AVAILABLE_FLAVORS.copy()
