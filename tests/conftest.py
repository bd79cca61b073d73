import logging
from pathlib import Path

import pytest

from cnab_k8s_driver.core.metrics import DriverMetrics
from cnab_k8s_driver.domain.models import InvocationImage, Operation
from cnab_k8s_driver.services.k8s_driver.config import DriverConfig
from cnab_k8s_driver.settings import Settings

from tests.helpers.k8s_fakes import FakeBatchV1Api, FakeCoreV1Api, make_k8s_clients


@pytest.fixture
def test_logger() -> logging.Logger:
    return logging.getLogger("test.cnab_k8s_driver")


@pytest.fixture
def test_settings() -> Settings:
    return Settings(JOB_TIMEOUT_SECONDS=5, JOB_POLL_INTERVAL_SECONDS=0.01, LOG_STREAM_TIMEOUT_SECONDS=5)


@pytest.fixture
def metrics(test_settings: Settings) -> DriverMetrics:
    return DriverMetrics(test_settings)


@pytest.fixture
def shared_dir(tmp_path: Path) -> Path:
    """Simulates the shared volume as mounted in the driver's process."""
    path = tmp_path / "shared"
    path.mkdir()
    return path


@pytest.fixture
def driver_config(shared_dir: Path) -> DriverConfig:
    return DriverConfig(
        job_volume_name="cnab-driver-shared",
        job_volume_path=str(shared_dir),
        namespace="default",
        skip_cleanup=True,
        job_timeout_seconds=5,
        poll_interval_seconds=0.01,
        log_stream_timeout_seconds=5,
    )


@pytest.fixture
def fake_clients():
    return make_k8s_clients()


@pytest.fixture
def fake_v1(fake_clients) -> FakeCoreV1Api:
    return fake_clients[1]


@pytest.fixture
def fake_batch_v1(fake_clients) -> FakeBatchV1Api:
    return fake_clients[2]


@pytest.fixture
def operation() -> Operation:
    return Operation(
        action="install",
        installation="foo",
        image=InvocationImage(image="foo/bar"),
        environment={"foo": "bar"},
    )
