from typing import Dict, List, Optional

from kubernetes import client as k8s_client

from cnab_k8s_driver.domain.models import Operation, RunContext
from cnab_k8s_driver.services.k8s_driver.config import DriverConfig
from cnab_k8s_driver.services.shared_volume import CONTAINER_OUTPUTS_DIR, SharedVolumeBridge

CONTAINER_NAME = "invocation"
RUN_ENTRYPOINT = "/cnab/app/run"
SHARED_VOLUME_NAME = "cnab-driver-shared"

LABEL_PREFIX = "cnab.io/"
DRIVER_LABEL = f"{LABEL_PREFIX}driver"
RUN_ID_LABEL = f"{LABEL_PREFIX}run-id"


def run_label_selector(run_id: str) -> str:
    return f"{RUN_ID_LABEL}={run_id}"


class JobBuilder:
    """Builds the Secret and Job manifests for a run"""

    def __init__(self, config: DriverConfig, volume: SharedVolumeBridge):
        self.config = config
        self.volume = volume

    def build_secret(self, run: RunContext, environment: Dict[str, str]) -> k8s_client.V1Secret:
        """Environment values are stored verbatim; the container receives them through env_from."""
        return k8s_client.V1Secret(
            api_version="v1",
            kind="Secret",
            metadata=k8s_client.V1ObjectMeta(
                name=run.run_id,
                namespace=self.config.namespace,
                labels=self._build_labels(run.run_id),
            ),
            type="Opaque",
            string_data=dict(environment),
        )

    def build_job(self, run: RunContext, image: str, operation: Operation) -> k8s_client.V1Job:
        """Build the single-container Job running ``image`` for ``operation.action``"""
        labels = self._build_labels(run.run_id)
        annotations = self._build_annotations(operation)

        container = self._build_container(run, image, operation)
        pod_spec = self._build_pod_spec(container)

        return k8s_client.V1Job(
            api_version="batch/v1",
            kind="Job",
            metadata=k8s_client.V1ObjectMeta(
                name=run.run_id,
                namespace=self.config.namespace,
                labels=labels,
                annotations=annotations,
            ),
            spec=k8s_client.V1JobSpec(
                active_deadline_seconds=self.config.job_timeout_seconds,
                backoff_limit=0,
                completions=1,
                parallelism=1,
                template=k8s_client.V1PodTemplateSpec(
                    metadata=k8s_client.V1ObjectMeta(labels=labels, annotations=annotations),
                    spec=pod_spec,
                ),
            ),
        )

    def _build_container(self, run: RunContext, image: str, operation: Operation) -> k8s_client.V1Container:
        # Every input file gets its own mount so the rest of /cnab/app stays as shipped in the image
        volume_mounts: List[k8s_client.V1VolumeMount] = [
            k8s_client.V1VolumeMount(
                name=SHARED_VOLUME_NAME,
                mount_path=container_path,
                sub_path=self.volume.input_sub_path(run, container_path),
            )
            for container_path in sorted(operation.files)
        ]
        volume_mounts.append(
            k8s_client.V1VolumeMount(
                name=SHARED_VOLUME_NAME,
                mount_path=str(CONTAINER_OUTPUTS_DIR),
                sub_path=self.volume.outputs_sub_path(run),
            )
        )

        return k8s_client.V1Container(
            name=CONTAINER_NAME,
            image=image,
            image_pull_policy="IfNotPresent",
            command=[RUN_ENTRYPOINT],
            args=[operation.action],
            env_from=[
                k8s_client.V1EnvFromSource(
                    secret_ref=k8s_client.V1SecretEnvSource(name=run.run_id)
                )
            ],
            volume_mounts=volume_mounts,
        )

    def _build_pod_spec(self, container: k8s_client.V1Container) -> k8s_client.V1PodSpec:
        spec = k8s_client.V1PodSpec(
            containers=[container],
            restart_policy="Never",
            volumes=[
                k8s_client.V1Volume(
                    name=SHARED_VOLUME_NAME,
                    persistent_volume_claim=k8s_client.V1PersistentVolumeClaimVolumeSource(
                        claim_name=self.config.job_volume_name
                    ),
                )
            ],
        )

        if self.config.service_account:
            spec.service_account_name = self.config.service_account
        else:
            spec.automount_service_account_token = False

        return spec

    def _build_labels(self, run_id: str) -> Dict[str, str]:
        labels = dict(self.config.labels)
        labels[DRIVER_LABEL] = "kubernetes"
        labels[RUN_ID_LABEL] = run_id
        return labels

    def _build_annotations(self, operation: Operation) -> Dict[str, str]:
        annotations = {
            f"{LABEL_PREFIX}action": operation.action,
            f"{LABEL_PREFIX}installation": operation.installation,
        }
        optional: Dict[str, Optional[str]] = {
            f"{LABEL_PREFIX}revision": operation.revision,
            f"{LABEL_PREFIX}bundle": operation.bundle,
        }
        annotations.update({key: value for key, value in optional.items() if value})
        return annotations
