"""Kubernetes driver for CNAB invocation images."""

from cnab_k8s_driver.domain.exceptions import (
    CleanupFailedError,
    ConfigError,
    DigestMismatchError,
    DriverError,
    HarvestFailedError,
    InvalidDigestError,
    InvalidReferenceError,
    InvalidStateError,
    JobCreationFailedError,
    RunError,
    RunFailedError,
    RunTimedOutError,
    SecretCreationFailedError,
    StagingFailedError,
    UnsupportedImageTypeError,
)
from cnab_k8s_driver.domain.models import InvocationImage, Operation, OperationResult
from cnab_k8s_driver.services.k8s_driver import Driver, DriverConfig

__all__ = [
    "Driver",
    "DriverConfig",
    "InvocationImage",
    "Operation",
    "OperationResult",
    "DriverError",
    "ConfigError",
    "InvalidStateError",
    "UnsupportedImageTypeError",
    "InvalidReferenceError",
    "InvalidDigestError",
    "DigestMismatchError",
    "RunError",
    "StagingFailedError",
    "HarvestFailedError",
    "SecretCreationFailedError",
    "JobCreationFailedError",
    "RunFailedError",
    "RunTimedOutError",
    "CleanupFailedError",
]
