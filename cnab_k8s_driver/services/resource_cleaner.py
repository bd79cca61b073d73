import asyncio
import logging
from functools import partial
from typing import Any, Callable

from kubernetes.client.rest import ApiException

from cnab_k8s_driver.core.k8s_clients import K8sClients
from cnab_k8s_driver.core.metrics import DriverMetrics
from cnab_k8s_driver.domain.exceptions import CleanupFailedError
from cnab_k8s_driver.domain.models import RunContext
from cnab_k8s_driver.services.k8s_driver.job_builder import run_label_selector


class ResourceCleaner:
    """Deletes the cluster objects created for a run"""

    def __init__(self, clients: K8sClients, logger: logging.Logger, metrics: DriverMetrics) -> None:
        self.v1 = clients.v1
        self.batch_v1 = clients.batch_v1
        self.logger = logger
        self.metrics = metrics

    async def cleanup_run(self, run: RunContext) -> list[CleanupFailedError]:
        """Delete the Job, its Pods and the Secret, in that order.

        Objects already gone are not failures. Returns the failures instead of raising
        so a cleanup problem never replaces the run's own result.
        """
        self.logger.info(f"Cleaning up resources for run: {run.run_id}")
        failures: list[CleanupFailedError] = []

        if run.job_name:
            await self._delete(
                run,
                "Job",
                run.job_name,
                partial(
                    self.batch_v1.delete_namespaced_job,
                    run.job_name,
                    run.namespace,
                    propagation_policy="Background",
                ),
                failures,
            )
            await self._delete_labeled_pods(run, failures)

        if run.secret_name:
            await self._delete(
                run,
                "Secret",
                run.secret_name,
                partial(self.v1.delete_namespaced_secret, run.secret_name, run.namespace),
                failures,
            )

        if not failures:
            self.logger.info(f"Successfully cleaned up resources for run: {run.run_id}")
        return failures

    async def _delete(
        self,
        run: RunContext,
        kind: str,
        name: str,
        delete_func: Callable[[], Any],
        failures: list[CleanupFailedError],
    ) -> None:
        try:
            await asyncio.to_thread(delete_func)
            self.logger.info(f"Deleted {kind}: {name}")
        except ApiException as e:
            if e.status == 404:
                self.logger.info(f"{kind} {name} already deleted")
                return
            self.logger.error(f"Failed to delete {kind} {name}: {e.reason}")
            self.metrics.record_cleanup_failure(kind)
            failures.append(CleanupFailedError(run.run_id, f"could not delete {kind} {name}: {e.reason}"))

    async def _delete_labeled_pods(self, run: RunContext, failures: list[CleanupFailedError]) -> None:
        try:
            pods = await asyncio.to_thread(
                partial(self.v1.list_namespaced_pod, run.namespace, label_selector=run_label_selector(run.run_id))
            )
        except ApiException as e:
            self.logger.error(f"Failed to list pods for run {run.run_id}: {e.reason}")
            self.metrics.record_cleanup_failure("Pod")
            failures.append(CleanupFailedError(run.run_id, f"could not list pods: {e.reason}"))
            return

        for pod in pods.items:
            await self._delete(
                run,
                "Pod",
                pod.metadata.name,
                partial(self.v1.delete_namespaced_pod, pod.metadata.name, run.namespace),
                failures,
            )
