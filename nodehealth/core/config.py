# nodehealth/core/config.py
from pydantic_settings import BaseSettings
from pydantic import Field, validator
from typing import Optional
import logging

logger = logging.getLogger(__name__)

class Settings(BaseSettings):
    APP_NAME: str = "Node Health Check Controller"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Kubernetes Config - leave blank to use in-cluster or default kubeconfig
    KUBE_CONFIG_PATH: Optional[str] = None
    ON_OPENSHIFT: bool = Field(False, description="Enable MachineHealthCheck and ClusterVersion based conflict checks")

    # Policy custom resource coordinates
    POLICY_GROUP: str = "remediation.medik8s.io"
    POLICY_VERSION: str = "v1alpha1"
    POLICY_PLURAL: str = "nodehealthchecks"
    POLICY_KIND: str = "NodeHealthCheck"

    # Controller runtime
    CONTROLLER_ENABLED: bool = Field(True, description="Start watches and reconcile workers on application startup")
    RECONCILE_WORKERS: int = Field(2, ge=1, description="Number of concurrent reconcile workers")
    RESYNC_PERIOD_SECONDS: int = Field(600, ge=0, description="Full re-list interval, 0 disables periodic resync")
    WATCH_TIMEOUT_SECONDS: int = Field(300, ge=1, description="Server side timeout of a single watch request")
    DISABLED_RECHECK_SECONDS: int = Field(60, ge=1, description="Re-evaluation interval while a policy is disabled or paused")
    STATUS_UPDATE_RETRIES: int = Field(3, ge=0, description="Re-read and recompute attempts on status write conflicts")
    MAX_BACKOFF_SECONDS: int = Field(300, ge=1, description="Upper bound of the failed-pass retry backoff")

    # Percentages of minHealthy are scaled with this rounding mode
    MIN_HEALTHY_ROUNDING: str = Field("up", description="'up' (ceiling) or 'down' (floor)")

    @validator('MIN_HEALTHY_ROUNDING')
    def validate_rounding(cls, v):
        if v not in ['up', 'down']:
            raise ValueError("MIN_HEALTHY_ROUNDING must be either 'up' or 'down'")
        return v

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        if not isinstance(logging.getLevelName(v.upper()), int):
            raise ValueError(f"Unknown LOG_LEVEL '{v}'")
        return v

    class Config:
        env_file = '.env' # Load environment variables from .env file
        env_file_encoding = 'utf-8'
        extra = 'ignore' # Ignore extra fields from environment

settings = Settings()

if not settings.ON_OPENSHIFT:
    logger.info("ON_OPENSHIFT not set. MachineHealthCheck conflict and cluster upgrade checks are disabled.")
