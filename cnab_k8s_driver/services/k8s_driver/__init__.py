"""Kubernetes driver for running invocation images as Jobs"""

from cnab_k8s_driver.services.k8s_driver.config import DriverConfig
from cnab_k8s_driver.services.k8s_driver.driver import Driver
from cnab_k8s_driver.services.k8s_driver.job_builder import JobBuilder
from cnab_k8s_driver.services.k8s_driver.job_waiter import JobOutcome, JobStatusPoller, SubmittedJobWaiter

__all__ = [
    "Driver",
    "DriverConfig",
    "JobBuilder",
    "JobOutcome",
    "JobStatusPoller",
    "SubmittedJobWaiter",
]
