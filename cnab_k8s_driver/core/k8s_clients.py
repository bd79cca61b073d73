import logging
from dataclasses import dataclass
from typing import TypeAlias

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config


@dataclass(frozen=True)
class K8sClients:
    api_client: k8s_client.ApiClient
    v1: k8s_client.CoreV1Api
    batch_v1: k8s_client.BatchV1Api


@dataclass(frozen=True)
class ExplicitConfig:
    """Credentials from a kubeconfig file."""

    path: str
    master_url: str | None = None

    def load(self) -> k8s_client.Configuration:
        configuration = k8s_client.Configuration()
        k8s_config.load_kube_config(config_file=self.path, client_configuration=configuration)
        if self.master_url:
            configuration.host = self.master_url
        return configuration


@dataclass(frozen=True)
class InClusterConfig:
    """Credentials from the pod's mounted service account."""

    master_url: str | None = None

    def load(self) -> k8s_client.Configuration:
        configuration = k8s_client.Configuration()
        k8s_config.load_incluster_config(client_configuration=configuration)
        if self.master_url:
            configuration.host = self.master_url
        return configuration


Credentials: TypeAlias = ExplicitConfig | InClusterConfig


def create_k8s_clients(logger: logging.Logger, credentials: Credentials) -> K8sClients:
    configuration = credentials.load()
    logger.info(f"Kubernetes API host: {configuration.host}")
    logger.info(f"SSL CA configured: {configuration.ssl_ca_cert is not None}")

    api_client = k8s_client.ApiClient(configuration)
    return K8sClients(
        api_client=api_client,
        v1=k8s_client.CoreV1Api(api_client),
        batch_v1=k8s_client.BatchV1Api(api_client),
    )


def close_k8s_clients(clients: K8sClients) -> None:
    close = getattr(clients.api_client, "close", None)
    if callable(close):
        close()
