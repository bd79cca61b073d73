import asyncio
import logging
import time
from typing import Mapping

from cnab_k8s_driver.core.k8s_clients import K8sClients, close_k8s_clients
from cnab_k8s_driver.core.logging import LOGGER_NAME, run_id_context
from cnab_k8s_driver.core.metrics import DriverMetrics
from cnab_k8s_driver.domain.enums import ImageType, RunPhase
from cnab_k8s_driver.domain.exceptions import (
    ConfigError,
    InvalidStateError,
    RunTimedOutError,
    UnsupportedImageTypeError,
)
from cnab_k8s_driver.domain.models import Operation, OperationResult, RunContext
from cnab_k8s_driver.services.image_resolver import resolve_image
from cnab_k8s_driver.services.k8s_driver.config import CONFIG_OPTIONS, DriverConfig, connect
from cnab_k8s_driver.services.k8s_driver.job_builder import JobBuilder
from cnab_k8s_driver.services.k8s_driver.job_waiter import JobStatusPoller, JobWaiter
from cnab_k8s_driver.services.k8s_driver.log_streamer import LogStreamer
from cnab_k8s_driver.services.k8s_driver.run_controller import RunController
from cnab_k8s_driver.services.naming import generate_name_template, generate_run_id
from cnab_k8s_driver.services.resource_cleaner import ResourceCleaner
from cnab_k8s_driver.services.shared_volume import SharedVolumeBridge
from cnab_k8s_driver.settings import Settings, get_settings

SUPPORTED_IMAGE_TYPES = frozenset({ImageType.DOCKER, ImageType.OCI})


class Driver:
    """Runs invocation images as Kubernetes Jobs.

    Configure once with ``set_config`` (or pass ``config`` and ``clients`` directly),
    then ``await driver.run(operation)`` any number of times, concurrently if needed.

    ``job_waiter`` replaces the status poller; ``SubmittedJobWaiter`` skips waiting
    entirely and is only meant for tests against fake clients.
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        settings: Settings | None = None,
        *,
        config: DriverConfig | None = None,
        clients: K8sClients | None = None,
        job_waiter: JobWaiter | None = None,
        metrics: DriverMetrics | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.metrics = metrics or DriverMetrics(self.settings)
        self._job_waiter = job_waiter

        self._config: DriverConfig | None = None
        self._clients: K8sClients | None = None
        self._controller: RunController | None = None
        self._cleaner: ResourceCleaner | None = None
        self._volume: SharedVolumeBridge | None = None
        self._accepting_runs = False

        if config is not None:
            self._configure(config, clients)

    @property
    def config(self) -> DriverConfig | None:
        return self._config

    @staticmethod
    def config_options() -> dict[str, str]:
        """Option keys understood by set_config, with descriptions."""
        return dict(CONFIG_OPTIONS)

    @staticmethod
    def handles(image_type: str) -> bool:
        return image_type in SUPPORTED_IMAGE_TYPES

    def set_config(self, options: Mapping[str, str]) -> None:
        """Validate ``options`` and connect to the cluster. Not allowed once runs have started."""
        if self._accepting_runs:
            raise InvalidStateError("driver configuration cannot change after runs have started")
        config = DriverConfig.from_options(options, self.settings)
        self._configure(config, None)

    def _configure(self, config: DriverConfig, clients: K8sClients | None) -> None:
        if clients is None:
            if config.credentials is None:
                raise ConfigError("one of KUBECONFIG or IN_CLUSTER is required", setting="KUBECONFIG")
            clients = connect(config.credentials, self.logger)

        volume = SharedVolumeBridge(config.job_volume_path, self.logger)
        waiter = self._job_waiter or JobStatusPoller(
            clients,
            self.logger,
            interval=config.poll_interval_seconds,
            timeout=config.job_timeout_seconds,
        )

        if self._clients is not None and self._clients is not clients:
            close_k8s_clients(self._clients)

        self._config = config
        self._clients = clients
        self._volume = volume
        self._controller = RunController(
            clients=clients,
            builder=JobBuilder(config, volume),
            volume=volume,
            waiter=waiter,
            log_streamer=LogStreamer(clients, self.logger, timeout=config.log_stream_timeout_seconds),
            logger=self.logger,
            metrics=self.metrics,
        )
        self._cleaner = ResourceCleaner(clients, self.logger, self.metrics)
        self.logger.info(
            f"Driver configured for namespace {config.namespace} with volume {config.job_volume_name}"
        )

    async def run(self, operation: Operation) -> OperationResult:
        """Execute ``operation`` and return its collected outputs.

        Returns only once the Job has reached a terminal state or timed out. Created
        objects are removed afterwards unless cleanup is disabled.
        """
        if self._config is None or self._controller is None or self._volume is None:
            raise InvalidStateError("driver is not configured, call set_config first")
        if not self.handles(operation.image.image_type):
            raise UnsupportedImageTypeError(operation.image.image_type)
        self._accepting_runs = True

        run_id = generate_run_id(generate_name_template(operation.action, operation.installation))
        run = RunContext(run_id=run_id, namespace=self._config.namespace, run_dir=self._volume.run_dir(run_id))

        token = run_id_context.set(run_id)
        self.metrics.update_active_runs(1)
        outcome = "failed"
        self.logger.info(f"Starting {operation.action} of {operation.installation} as run {run_id}")
        try:
            image = resolve_image(operation.image.image, operation.image.digest)
            result = await self._controller.execute(run, operation, image)
            outcome = "succeeded"
            return result
        except RunTimedOutError:
            outcome = "timed_out"
            raise
        finally:
            try:
                await self._cleanup(run)
            finally:
                self.metrics.update_active_runs(-1)
                self.metrics.record_run(operation.action, outcome, time.monotonic() - run.started_at)
                self.logger.info(f"Run {run_id} finished: {outcome}")
                run_id_context.reset(token)

    async def _cleanup(self, run: RunContext) -> None:
        if self._config is None or self._cleaner is None or self._volume is None:
            return
        if self._config.skip_cleanup:
            self.logger.info(f"Skipping cleanup of run {run.run_id}")
            return

        if run.has_cluster_objects:
            for failure in await self._cleaner.cleanup_run(run):
                self.logger.error(failure.message)

        try:
            await asyncio.to_thread(self._volume.discard, run)
        except OSError as e:
            self.logger.error(f"Failed to remove run directory {run.run_dir}: {e}")
        run.advance(RunPhase.CLEANED)

    def close(self) -> None:
        if self._clients is not None:
            close_k8s_clients(self._clients)
            self._clients = None
        self.metrics.close()
