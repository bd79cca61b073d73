"""Copies the invocation container's log into the caller's output sink"""

import asyncio
import logging
import time
from functools import partial
from typing import BinaryIO

from cnab_k8s_driver.core.k8s_clients import K8sClients
from cnab_k8s_driver.domain.models import RunContext
from cnab_k8s_driver.services.k8s_driver.job_builder import CONTAINER_NAME, run_label_selector

CHUNK_SIZE = 64 * 1024


class LogStreamer:
    """Best-effort log transfer; failures are logged and never fail the run.

    ``timeout`` bounds the whole transfer. The deadline is enforced in the copying
    thread itself, so nothing is written to the sink once ``stream`` has returned.
    """

    def __init__(self, clients: K8sClients, logger: logging.Logger, timeout: float) -> None:
        self.v1 = clients.v1
        self.logger = logger
        self.timeout = timeout

    async def stream(self, run: RunContext, sink: BinaryIO) -> None:
        deadline = time.monotonic() + self.timeout
        try:
            pods = await asyncio.to_thread(
                partial(self.v1.list_namespaced_pod, run.namespace, label_selector=run_label_selector(run.run_id))
            )
            # Oldest first, so a replacement pod's log follows the earlier one
            ordered = sorted(pods.items, key=lambda p: str(p.metadata.creation_timestamp or ""))
            for pod in ordered:
                if not await asyncio.to_thread(self._copy_log, pod.metadata.name, run.namespace, sink, deadline):
                    self.logger.warning(f"Log stream for run {run.run_id} cut off after {self.timeout:g}s")
                    break
        except Exception as e:
            self.logger.warning(f"Could not stream logs for run {run.run_id}: {e}")

    def _copy_log(self, pod_name: str, namespace: str, sink: BinaryIO, deadline: float) -> bool:
        """Copy one pod's log; returns False when the deadline cut it short."""
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False

        response = self.v1.read_namespaced_pod_log(
            name=pod_name,
            namespace=namespace,
            container=CONTAINER_NAME,
            _preload_content=False,
            # Bounds each socket read, so a stalled stream still reaches the deadline check
            _request_timeout=remaining,
        )
        completed = True
        try:
            for chunk in response.stream(CHUNK_SIZE):
                if time.monotonic() >= deadline:
                    completed = False
                    break
                sink.write(chunk)
        finally:
            if not completed:
                response.close()
            response.release_conn()
        flush = getattr(sink, "flush", None)
        if callable(flush):
            flush()
        return completed
