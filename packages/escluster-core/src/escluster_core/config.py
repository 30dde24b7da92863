"""Environment-based configuration for the cluster operator."""

from pathlib import Path

from pydantic_settings import BaseSettings

from escluster_protocols import ClusterHealth


class OperatorSettings(BaseSettings):
    """Operator configuration.

    All settings can be overridden via environment variables with
    ESCLUSTER_ prefix. For example:
        ESCLUSTER_PROBE_TIMEOUT_SECONDS=10
        ESCLUSTER_DATA_REMOVAL_HEALTH=yellow

    Settings are built once at startup and passed down explicitly through
    OperatorContext; nothing reads them from module globals.
    """

    # Remote call bounds
    probe_timeout_seconds: float = 5.0
    call_timeout_seconds: float = 10.0

    # Step backoff
    backoff_min_seconds: float = 2.0
    backoff_max_seconds: float = 60.0
    backoff_base: float = 2.0
    backoff_jitter: float = 0.1
    health_max_wait_seconds: float = 600.0
    deferral_requeue_seconds: float = 15.0
    transient_retry_budget: int = 5
    persistence_failure_threshold: int = 3

    # Health gating
    min_step_health: ClusterHealth = ClusterHealth.YELLOW
    data_removal_health: ClusterHealth = ClusterHealth.GREEN
    single_master_restart: bool = True

    # Certificates
    cert_validity_days: int = 730
    ca_validity_days: int = 1825
    cert_rotation_horizon_days: int = 30
    cert_key_size: int = 2048

    # Workloads
    default_image: str = "quay.io/openshift/origin-logging-elasticsearch6:latest"
    endpoint_template: str = "https://{name}.{namespace}.svc:9200"

    # Control loop
    resync_interval_seconds: float = 300.0
    db_path: Path = Path("~/.escluster/state.db").expanduser()
    log_level: str = "INFO"

    model_config = {"env_prefix": "ESCLUSTER_"}

    def endpoint_for(self, name: str, namespace: str) -> str:
        """Admin API endpoint of a cluster."""
        return self.endpoint_template.format(name=name, namespace=namespace)
