"""Configuration for the Kubernetes driver"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from cnab_k8s_driver.core.k8s_clients import (
    Credentials,
    ExplicitConfig,
    InClusterConfig,
    K8sClients,
    create_k8s_clients,
)
from cnab_k8s_driver.core.utils import parse_bool
from cnab_k8s_driver.domain.exceptions import ConfigError
from cnab_k8s_driver.settings import Settings

CONFIG_OPTIONS: dict[str, str] = {
    "IN_CLUSTER": "Connect to the cluster using in-cluster environment variables",
    "CLEANUP_JOBS": (
        "If true, the job, its pods and secret are destroyed when it finishes running. "
        "The supported values are true and false. Defaults to true."
    ),
    "KUBE_NAMESPACE": "Kubernetes namespace in which to run the invocation image",
    "SERVICE_ACCOUNT": (
        "Kubernetes service account to be mounted by the invocation image "
        "(if empty, no service account token will be mounted)"
    ),
    "KUBECONFIG": "Absolute path to the kubeconfig file",
    "MASTER_URL": "Kubernetes master endpoint",
    "JOB_VOLUME_PATH": "Path where the JOB_VOLUME_NAME is mounted locally",
    "JOB_VOLUME_NAME": (
        "Name of the PersistentVolumeClaim to mount which enables the driver to share files "
        "with the invocation image"
    ),
    "LABELS": "Labels to apply to cluster resources created by the driver, separated by whitespace.",
}


@dataclass(frozen=True)
class DriverConfig:
    """Validated driver configuration. Frozen once the driver accepts runs."""

    job_volume_name: str
    job_volume_path: str
    credentials: Optional[Credentials] = None
    namespace: str = "default"
    service_account: Optional[str] = None
    labels: dict[str, str] = field(default_factory=dict)
    skip_cleanup: bool = False

    # Run settings
    job_timeout_seconds: int = 1800
    poll_interval_seconds: float = 2.0
    log_stream_timeout_seconds: int = 60

    @classmethod
    def from_options(cls, options: Mapping[str, str], settings: Settings) -> "DriverConfig":
        """Build a config from a string option map; keys are case-insensitive, unknown keys ignored."""
        opts = {key.upper(): value for key, value in options.items()}

        job_volume_name = opts.get("JOB_VOLUME_NAME", "").strip()
        if not job_volume_name:
            raise ConfigError("setting JOB_VOLUME_NAME is required", setting="JOB_VOLUME_NAME")

        job_volume_path = opts.get("JOB_VOLUME_PATH", "").strip()
        if not job_volume_path:
            raise ConfigError("setting JOB_VOLUME_PATH is required", setting="JOB_VOLUME_PATH")

        return cls(
            job_volume_name=job_volume_name,
            job_volume_path=job_volume_path,
            credentials=_select_credentials(opts),
            namespace=opts.get("KUBE_NAMESPACE", "").strip() or settings.K8S_NAMESPACE,
            service_account=opts.get("SERVICE_ACCOUNT", "").strip() or None,
            labels=_parse_labels(opts.get("LABELS", "")),
            skip_cleanup=not _bool_option(opts, "CLEANUP_JOBS", default=True),
            job_timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
            poll_interval_seconds=settings.JOB_POLL_INTERVAL_SECONDS,
            log_stream_timeout_seconds=settings.LOG_STREAM_TIMEOUT_SECONDS,
        )


def _bool_option(opts: Mapping[str, str], key: str, default: bool) -> bool:
    raw = opts.get(key, "").strip()
    if not raw:
        return default
    try:
        return parse_bool(raw)
    except ValueError as e:
        raise ConfigError(f"setting {key} must be true or false, got {raw!r}", setting=key) from e


def _parse_labels(raw: str) -> dict[str, str]:
    labels: dict[str, str] = {}
    for item in raw.split():
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ConfigError(f"invalid label {item!r} in LABELS, expected key=value", setting="LABELS")
        labels[key] = value
    return labels


def _select_credentials(opts: Mapping[str, str]) -> Credentials:
    kubeconfig = opts.get("KUBECONFIG", "").strip()
    in_cluster = _bool_option(opts, "IN_CLUSTER", default=False)
    master_url = opts.get("MASTER_URL", "").strip() or None

    if kubeconfig and in_cluster:
        raise ConfigError("only one of KUBECONFIG or IN_CLUSTER may be set", setting="IN_CLUSTER")
    if in_cluster:
        return InClusterConfig(master_url=master_url)
    if kubeconfig:
        return ExplicitConfig(path=kubeconfig, master_url=master_url)
    raise ConfigError("one of KUBECONFIG or IN_CLUSTER is required", setting="KUBECONFIG")


def connect(credentials: Credentials, logger: logging.Logger) -> K8sClients:
    """Create API clients, failing fast with an error specific to the credential mode."""
    try:
        return create_k8s_clients(logger, credentials)
    except Exception as e:
        if isinstance(credentials, InClusterConfig):
            raise ConfigError(
                f"error retrieving in-cluster kubernetes configuration: {e}", setting="IN_CLUSTER"
            ) from e
        raise ConfigError(
            f"error retrieving external kubernetes configuration using configuration {credentials.path}: {e}",
            setting="KUBECONFIG",
        ) from e
