import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Settings(BaseModel):
    """Driver tunables loaded from TOML configuration files.

    Per-run wiring (volume, credentials, namespace) comes from ``Driver.set_config``;
    this model only carries process-wide defaults.

    Load order (each layer overrides the previous):
        1. config_path    : base settings, optional
        2. override_path  : per-deployment overrides, optional

    Usage:
        Settings()                                         # built-in defaults
        Settings(config_path="driver.toml")                # file overrides defaults
        Settings(config_path="driver.toml", override_path="driver.ci.toml")
    """

    model_config = ConfigDict(extra="forbid")

    def __init__(
        self,
        config_path: str | None = None,
        override_path: str | None = None,
        **values: Any,
    ) -> None:
        data: dict[str, Any] = {}
        if config_path and Path(config_path).is_file():
            with open(config_path, "rb") as f:
                data |= tomllib.load(f)
        if override_path:
            with open(override_path, "rb") as f:
                data |= tomllib.load(f)
        data |= values
        super().__init__(**data)

    SERVICE_NAME: str = "cnab-k8s-driver"

    # Kubernetes namespace used when KUBE_NAMESPACE is not passed to set_config
    K8S_NAMESPACE: str = "default"

    # Overall run deadline; also applied as the Job's activeDeadlineSeconds
    JOB_TIMEOUT_SECONDS: int = Field(default=1800, gt=0)
    JOB_POLL_INTERVAL_SECONDS: float = Field(default=2.0, gt=0)
    LOG_STREAM_TIMEOUT_SECONDS: int = Field(default=60, gt=0)

    LOG_LEVEL: str = "INFO"

    ENABLE_METRICS: bool = False
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(config_path="cnab-driver.toml")
