import asyncio
import io
from dataclasses import replace
from pathlib import Path

import pytest
from kubernetes.client.rest import ApiException

from cnab_k8s_driver.domain.enums import RunPhase
from cnab_k8s_driver.domain.exceptions import (
    DigestMismatchError,
    InvalidReferenceError,
    InvalidStateError,
    JobCreationFailedError,
    RunFailedError,
    RunTimedOutError,
    SecretCreationFailedError,
    UnsupportedImageTypeError,
)
from cnab_k8s_driver.domain.models import InvocationImage, Operation
from cnab_k8s_driver.services.k8s_driver import Driver, DriverConfig, JobOutcome, SubmittedJobWaiter
from cnab_k8s_driver.services.k8s_driver.job_builder import RUN_ID_LABEL

from tests.helpers.k8s_fakes import WorkloadSimulator, job_status

DIGEST = "sha256:9cfb3575ae5ff2b23ffa3c8e9514d818a9028a71b1d1e3b56b31937188a70b21"


@pytest.fixture
def make_driver(fake_clients, driver_config: DriverConfig, test_logger, test_settings, metrics):
    clients, _, _ = fake_clients

    def _make(config: DriverConfig | None = None, waiter=None) -> Driver:
        return Driver(
            test_logger,
            test_settings,
            config=config or driver_config,
            clients=clients,
            job_waiter=waiter if waiter is not None else SubmittedJobWaiter(),
            metrics=metrics,
        )

    return _make


@pytest.fixture
def cleanup_config(driver_config: DriverConfig) -> DriverConfig:
    return replace(driver_config, skip_cleanup=False)


@pytest.mark.asyncio
async def test_driver_run(make_driver, fake_v1, fake_batch_v1, operation: Operation) -> None:
    d = make_driver()

    result = await d.run(operation)

    assert result.outputs == {}
    assert len(fake_batch_v1.jobs) == 1
    assert len(fake_v1.secrets) == 1

    (job_name,) = fake_batch_v1.jobs
    (secret_name,) = fake_v1.secrets
    assert job_name == secret_name
    assert job_name.startswith("install-foo-")
    assert fake_v1.secrets[secret_name].string_data == {"foo": "bar"}

    job = fake_batch_v1.jobs[job_name]
    assert job.spec.template.spec.containers[0].image == "foo/bar"
    assert job.metadata.labels[RUN_ID_LABEL] == job_name


@pytest.mark.asyncio
async def test_image_is_pinned_to_digest(make_driver, fake_batch_v1, operation: Operation) -> None:
    op = replace(operation, image=InvocationImage(image="foo/bar:baz", digest=DIGEST))

    await make_driver().run(op)

    (job,) = fake_batch_v1.jobs.values()
    assert job.spec.template.spec.containers[0].image == f"foo/bar:baz@{DIGEST}"


@pytest.mark.asyncio
async def test_driver_run_with_shared_files(
    make_driver, fake_batch_v1, operation: Operation, shared_dir: Path
) -> None:
    staged: list[str] = []

    def check_inputs_staged(job) -> None:
        # Inputs must already be on the volume when the Job is submitted
        staged.append((shared_dir / job.metadata.name / "inputs/cnab/app/someinput").read_text())

    fake_batch_v1.on_create = check_inputs_staged
    op = replace(
        operation,
        files={"/cnab/app/someinput": "input value"},
        outputs={"/cnab/app/outputs/foo": "foo"},
    )

    result = await make_driver(waiter=WorkloadSimulator(outputs={"foo": "foobar"})).run(op)

    assert staged == ["input value"]
    assert result.outputs == {"foo": "foobar"}


@pytest.mark.asyncio
async def test_invalid_image_creates_nothing(make_driver, fake_v1, fake_batch_v1, operation: Operation) -> None:
    op = replace(operation, image=InvocationImage(image="foo/bar@sha:invalid"))

    with pytest.raises(InvalidReferenceError):
        await make_driver().run(op)

    assert fake_v1.secrets == {}
    assert fake_batch_v1.jobs == {}


@pytest.mark.asyncio
async def test_digest_mismatch_creates_nothing(make_driver, fake_v1, fake_batch_v1, operation: Operation) -> None:
    other = "sha256:" + "1" * 64
    op = replace(operation, image=InvocationImage(image=f"foo/bar@{DIGEST}", digest=other))

    with pytest.raises(DigestMismatchError) as exc_info:
        await make_driver().run(op)

    assert exc_info.value.embedded_digest == DIGEST
    assert fake_v1.secrets == {}
    assert fake_batch_v1.jobs == {}


@pytest.mark.asyncio
async def test_secret_failure_creates_no_job(make_driver, fake_v1, fake_batch_v1, operation: Operation) -> None:
    fake_v1.create_secret_error = ApiException(status=403, reason="Forbidden")

    with pytest.raises(SecretCreationFailedError) as exc_info:
        await make_driver().run(operation)

    assert "Forbidden" in str(exc_info.value)
    assert fake_batch_v1.jobs == {}


@pytest.mark.asyncio
async def test_job_failure_cleans_up_secret(
    make_driver, cleanup_config, fake_v1, fake_batch_v1, operation: Operation
) -> None:
    fake_batch_v1.create_job_error = ApiException(status=422, reason="Unprocessable Entity")

    with pytest.raises(JobCreationFailedError):
        await make_driver(cleanup_config).run(operation)

    assert fake_v1.secrets == {}
    assert [kind for kind, _ in fake_v1.deleted] == ["secret"]
    assert fake_batch_v1.deleted == []


@pytest.mark.asyncio
async def test_failed_run_raises_and_cleans_up(
    make_driver, cleanup_config, fake_v1, fake_batch_v1, operation: Operation, shared_dir: Path
) -> None:
    waiter = WorkloadSimulator(outcome=JobOutcome(phase=RunPhase.FAILED, reason="BackoffLimitExceeded", exit_code=2))

    with pytest.raises(RunFailedError) as exc_info:
        await make_driver(cleanup_config, waiter).run(operation)

    err = exc_info.value
    assert err.exit_code == 2
    assert "BackoffLimitExceeded" in str(err)
    assert err.run_id == waiter.runs[0].run_id

    assert fake_batch_v1.jobs == {}
    assert fake_v1.secrets == {}
    assert not (shared_dir / err.run_id).exists()
    assert waiter.runs[0].phase is RunPhase.CLEANED


@pytest.mark.asyncio
async def test_timed_out_run(make_driver, cleanup_config, fake_v1, fake_batch_v1, operation: Operation) -> None:
    waiter = WorkloadSimulator(outcome=JobOutcome(phase=RunPhase.TIMED_OUT, reason="timed out"))

    with pytest.raises(RunTimedOutError):
        await make_driver(cleanup_config, waiter).run(operation)

    assert fake_batch_v1.jobs == {}
    assert fake_v1.secrets == {}


@pytest.mark.asyncio
async def test_failed_run_does_not_harvest(make_driver, operation: Operation) -> None:
    waiter = WorkloadSimulator(outputs={"foo": "partial"}, outcome=JobOutcome(phase=RunPhase.FAILED))
    op = replace(operation, outputs={"/cnab/app/outputs/foo": "foo"})

    with pytest.raises(RunFailedError):
        await make_driver(waiter=waiter).run(op)

    assert waiter.runs[0].phase is RunPhase.FAILED


@pytest.mark.asyncio
async def test_polls_job_status_until_complete(
    fake_clients, driver_config, test_logger, test_settings, metrics, fake_batch_v1, operation: Operation
) -> None:
    clients, _, _ = fake_clients
    fake_batch_v1.statuses = [job_status(active=1), job_status(succeeded=1)]
    d = Driver(test_logger, test_settings, config=driver_config, clients=clients, metrics=metrics)

    await d.run(operation)

    assert fake_batch_v1.status_reads == 2


@pytest.mark.asyncio
async def test_concurrent_runs_are_isolated(make_driver, fake_v1, fake_batch_v1, operation: Operation) -> None:
    waiter = WorkloadSimulator(outputs={"foo": "foobar"})
    d = make_driver(waiter=waiter)
    first = replace(operation, files={"/cnab/app/someinput": "first"}, outputs={"/cnab/app/outputs/foo": "foo"})
    second = replace(operation, files={"/cnab/app/someinput": "second"}, outputs={"/cnab/app/outputs/foo": "foo"})

    results = await asyncio.gather(d.run(first), d.run(second))

    assert [r.outputs for r in results] == [{"foo": "foobar"}, {"foo": "foobar"}]
    assert len(fake_batch_v1.jobs) == 2
    assert len(fake_v1.secrets) == 2
    run_ids = {run.run_id for run in waiter.runs}
    assert run_ids == set(fake_batch_v1.jobs)
    staged = sorted((run.staging_path / "cnab/app/someinput").read_text() for run in waiter.runs)
    assert staged == ["first", "second"]


@pytest.mark.asyncio
async def test_logs_are_written_to_operation_out(make_driver, fake_v1, operation: Operation) -> None:
    out = io.BytesIO()
    waiter = WorkloadSimulator(v1=fake_v1, log=b"Install action\nAction install complete\n")

    await make_driver(waiter=waiter).run(replace(operation, out=out))

    assert out.getvalue() == b"Install action\nAction install complete\n"


@pytest.mark.asyncio
async def test_logs_are_written_when_run_fails(make_driver, fake_v1, operation: Operation) -> None:
    out = io.BytesIO()
    waiter = WorkloadSimulator(v1=fake_v1, log=b"boom\n", outcome=JobOutcome(phase=RunPhase.FAILED, exit_code=1))

    with pytest.raises(RunFailedError):
        await make_driver(waiter=waiter).run(replace(operation, out=out))

    assert out.getvalue() == b"boom\n"


@pytest.mark.asyncio
async def test_cleanup_failure_does_not_change_result(
    make_driver, cleanup_config, fake_v1, fake_batch_v1, operation: Operation, caplog
) -> None:
    fake_v1.delete_secret_error = ApiException(status=500, reason="Internal Server Error")
    op = replace(operation, outputs={"/cnab/app/outputs/foo": "foo"})

    result = await make_driver(cleanup_config, WorkloadSimulator(outputs={"foo": "foobar"})).run(op)

    assert result.outputs == {"foo": "foobar"}
    assert fake_batch_v1.jobs == {}
    assert len(fake_v1.secrets) == 1
    assert "could not delete Secret" in caplog.text


@pytest.mark.asyncio
async def test_objects_kept_when_cleanup_disabled(make_driver, fake_v1, fake_batch_v1, operation: Operation) -> None:
    await make_driver().run(operation)

    assert fake_v1.deleted == []
    assert fake_batch_v1.deleted == []


@pytest.mark.asyncio
async def test_run_requires_config(test_logger, test_settings, metrics, operation: Operation) -> None:
    d = Driver(test_logger, test_settings, metrics=metrics)

    with pytest.raises(InvalidStateError):
        await d.run(operation)


@pytest.mark.asyncio
async def test_config_is_frozen_after_first_run(make_driver, operation: Operation) -> None:
    d = make_driver()
    await d.run(operation)

    with pytest.raises(InvalidStateError):
        d.set_config({"JOB_VOLUME_NAME": "other", "JOB_VOLUME_PATH": "/tmp", "IN_CLUSTER": "true"})


@pytest.mark.asyncio
async def test_unsupported_image_type(make_driver, fake_batch_v1, operation: Operation) -> None:
    op = replace(operation, image=InvocationImage(image="foo/bar", image_type="qcow"))

    with pytest.raises(UnsupportedImageTypeError):
        await make_driver().run(op)

    assert fake_batch_v1.jobs == {}


@pytest.mark.asyncio
async def test_docker_image_type_is_accepted(make_driver, fake_batch_v1, operation: Operation) -> None:
    op = replace(operation, image=InvocationImage(image="foo/bar", image_type="docker"))

    await make_driver().run(op)

    assert len(fake_batch_v1.jobs) == 1


@pytest.mark.asyncio
async def test_cluster_deadline_raises_timed_out(
    fake_clients, cleanup_config, test_logger, test_settings, metrics, fake_v1, fake_batch_v1, operation: Operation
) -> None:
    clients, _, _ = fake_clients
    fake_batch_v1.statuses = [job_status(active=1), job_status(failed=1, reason="DeadlineExceeded")]
    d = Driver(test_logger, test_settings, config=cleanup_config, clients=clients, metrics=metrics)

    with pytest.raises(RunTimedOutError):
        await d.run(operation)

    assert fake_batch_v1.jobs == {}
    assert fake_v1.secrets == {}
