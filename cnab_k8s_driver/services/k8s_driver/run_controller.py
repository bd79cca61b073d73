import asyncio
import logging

from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

from cnab_k8s_driver.core.k8s_clients import K8sClients
from cnab_k8s_driver.core.metrics import DriverMetrics
from cnab_k8s_driver.domain.enums import RunPhase
from cnab_k8s_driver.domain.exceptions import (
    JobCreationFailedError,
    RunFailedError,
    RunTimedOutError,
    SecretCreationFailedError,
)
from cnab_k8s_driver.domain.models import Operation, OperationResult, RunContext
from cnab_k8s_driver.services.k8s_driver.job_builder import JobBuilder
from cnab_k8s_driver.services.k8s_driver.job_waiter import JobWaiter
from cnab_k8s_driver.services.k8s_driver.log_streamer import LogStreamer
from cnab_k8s_driver.services.shared_volume import SharedVolumeBridge


class RunController:
    """
    Drives one run from staging to collected outputs.

    Handles:
    - Staging input files on the shared volume
    - Secret and Job creation
    - Waiting for a terminal state through the injected JobWaiter
    - Log streaming and output harvesting

    Cleanup is left to the caller so it also happens when this raises.
    """

    def __init__(
        self,
        clients: K8sClients,
        builder: JobBuilder,
        volume: SharedVolumeBridge,
        waiter: JobWaiter,
        log_streamer: LogStreamer,
        logger: logging.Logger,
        metrics: DriverMetrics,
    ):
        self.v1 = clients.v1
        self.batch_v1 = clients.batch_v1
        self.builder = builder
        self.volume = volume
        self.waiter = waiter
        self.log_streamer = log_streamer
        self.logger = logger
        self.metrics = metrics

    async def execute(self, run: RunContext, operation: Operation, image: str) -> OperationResult:
        await asyncio.to_thread(self.volume.stage_inputs, run, operation.files)
        run.advance(RunPhase.STAGED)
        self.logger.debug(f"Staged {len(operation.files)} input file(s) in {run.staging_path}")

        secret = self.builder.build_secret(run, operation.environment)
        await self._create_secret(run, secret)
        run.secret_name = secret.metadata.name
        run.advance(RunPhase.SECRET_CREATED)

        job = self.builder.build_job(run, image, operation)
        await self._create_job(run, job)
        run.job_name = job.metadata.name
        run.advance(RunPhase.JOB_CREATED)

        run.advance(RunPhase.POLLING)
        outcome = await self.waiter.wait(run)
        run.advance(outcome.phase)

        if self.waiter.streams_logs and operation.out is not None:
            await self.log_streamer.stream(run, operation.out)

        if outcome.phase is RunPhase.TIMED_OUT:
            raise RunTimedOutError(run.run_id, self.builder.config.job_timeout_seconds)
        if outcome.phase is not RunPhase.SUCCEEDED:
            raise RunFailedError(run.run_id, outcome.reason or "job failed", outcome.exit_code)

        outputs = await asyncio.to_thread(self.volume.harvest_outputs, run, operation.outputs)
        run.advance(RunPhase.COLLECTED)
        self.logger.info(f"Collected {len(outputs)} of {len(operation.outputs)} declared output(s)")
        return OperationResult(outputs=outputs)

    async def _create_secret(self, run: RunContext, secret: k8s_client.V1Secret) -> None:
        try:
            await asyncio.to_thread(
                self.v1.create_namespaced_secret, namespace=run.namespace, body=secret
            )
        except ApiException as e:
            self.logger.error(f"Failed to create Secret {secret.metadata.name}: {e.reason}")
            raise SecretCreationFailedError(run.run_id, f"{e.status} {e.reason}") from e
        self.metrics.record_object_created("Secret")
        self.logger.debug(f"Created Secret {secret.metadata.name}")

    async def _create_job(self, run: RunContext, job: k8s_client.V1Job) -> None:
        try:
            await asyncio.to_thread(
                self.batch_v1.create_namespaced_job, namespace=run.namespace, body=job
            )
        except ApiException as e:
            self.logger.error(f"Failed to create Job {job.metadata.name}: {e.reason}")
            raise JobCreationFailedError(run.run_id, f"{e.status} {e.reason}") from e
        self.metrics.record_object_created("Job")
        self.logger.info(f"Created Job {job.metadata.name} running {job.spec.template.spec.containers[0].image}")
