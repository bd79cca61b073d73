"""Strategies for waiting on a submitted Job.

``JobStatusPoller`` is used for real executions. ``SubmittedJobWaiter`` treats a
submitted Job as finished without contacting the cluster, which lets object
construction be verified against fake clients.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Protocol

from kubernetes.client.rest import ApiException

from cnab_k8s_driver.core.k8s_clients import K8sClients
from cnab_k8s_driver.domain.enums import RunPhase
from cnab_k8s_driver.domain.models import RunContext
from cnab_k8s_driver.services.k8s_driver.job_builder import CONTAINER_NAME, run_label_selector

# Status codes worth polling through
_TRANSIENT_STATUSES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class JobOutcome:
    phase: RunPhase
    reason: str = ""
    exit_code: int | None = None


class JobWaiter(Protocol):
    streams_logs: bool

    async def wait(self, run: RunContext) -> JobOutcome: ...


class SubmittedJobWaiter:
    """Assumes the Job succeeded as soon as it is submitted."""

    streams_logs = False

    async def wait(self, run: RunContext) -> JobOutcome:
        return JobOutcome(phase=RunPhase.SUCCEEDED, reason="job submitted")


class JobStatusPoller:
    """Polls the Job status at a fixed interval until it completes, fails or the timeout elapses"""

    streams_logs = True

    def __init__(self, clients: K8sClients, logger: logging.Logger, interval: float, timeout: float) -> None:
        self.batch_v1 = clients.batch_v1
        self.v1 = clients.v1
        self.logger = logger
        self.interval = interval
        self.timeout = timeout

    async def wait(self, run: RunContext) -> JobOutcome:
        try:
            async with asyncio.timeout(self.timeout):
                while True:
                    outcome = await self._check(run)
                    if outcome is not None:
                        return outcome
                    await asyncio.sleep(self.interval)
        except TimeoutError:
            self.logger.warning(f"Job {run.job_name} did not finish within {self.timeout}s")
            return JobOutcome(phase=RunPhase.TIMED_OUT, reason=f"timed out after {self.timeout:g}s")

    async def _check(self, run: RunContext) -> JobOutcome | None:
        try:
            job = await asyncio.to_thread(self.batch_v1.read_namespaced_job_status, run.job_name, run.namespace)
        except ApiException as e:
            if e.status in _TRANSIENT_STATUSES:
                self.logger.warning(f"Transient error reading status of job {run.job_name}: {e.reason}")
                return None
            return JobOutcome(phase=RunPhase.FAILED, reason=f"could not read job status: {e.reason}")

        status = job.status
        if status is None:
            return None

        if (status.succeeded or 0) >= 1 or _has_condition(status, "Complete"):
            self.logger.info(f"Job {run.job_name} succeeded")
            return JobOutcome(phase=RunPhase.SUCCEEDED)

        if (status.failed or 0) >= 1 or _has_condition(status, "Failed"):
            reason = _failure_reason(status)
            if _failed_with_reason(status, "DeadlineExceeded"):
                # activeDeadlineSeconds fired in the cluster before the local timeout
                self.logger.warning(f"Job {run.job_name} exceeded its deadline")
                return JobOutcome(phase=RunPhase.TIMED_OUT, reason=reason)
            exit_code = await self._exit_code(run)
            self.logger.info(f"Job {run.job_name} failed: {reason}")
            return JobOutcome(phase=RunPhase.FAILED, reason=reason, exit_code=exit_code)

        return None

    async def _exit_code(self, run: RunContext) -> int | None:
        try:
            pods = await asyncio.to_thread(
                partial(self.v1.list_namespaced_pod, run.namespace, label_selector=run_label_selector(run.run_id))
            )
        except ApiException as e:
            self.logger.warning(f"Could not list pods for job {run.job_name}: {e.reason}")
            return None

        for pod in pods.items:
            for cs in (pod.status and pod.status.container_statuses) or []:
                if cs.name != CONTAINER_NAME or cs.state is None or cs.state.terminated is None:
                    continue
                return cs.state.terminated.exit_code
        return None


def _has_condition(status: Any, condition_type: str) -> bool:
    return any(c.type == condition_type and c.status == "True" for c in status.conditions or [])


def _failure_reason(status: Any) -> str:
    for condition in status.conditions or []:
        if condition.type == "Failed" and condition.status == "True":
            parts = [p for p in (condition.reason, condition.message) if p]
            if parts:
                return ": ".join(parts)
    return "job failed"


def _failed_with_reason(status: Any, reason: str) -> bool:
    return any(
        c.type == "Failed" and c.status == "True" and c.reason == reason for c in status.conditions or []
    )
