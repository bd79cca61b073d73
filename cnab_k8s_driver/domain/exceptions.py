from typing import Mapping


class DriverError(Exception):
    """Base for all driver errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigError(DriverError):
    """Missing or invalid driver configuration; raised before any run starts."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        self.setting = setting
        super().__init__(message)


class InvalidStateError(DriverError):
    """Driver used out of order, e.g. run before set_config."""

    pass


class UnsupportedImageTypeError(DriverError):
    def __init__(self, image_type: str) -> None:
        self.image_type = image_type
        super().__init__(f"image type {image_type!r} is not supported by the kubernetes driver")


class ImageResolutionError(DriverError):
    """Invocation image reference could not be turned into a pinned reference."""

    pass


class InvalidReferenceError(ImageResolutionError):
    def __init__(self, image: str, reason: str) -> None:
        self.image = image
        super().__init__(f"could not parse {image} as an OCI reference: {reason}")


class InvalidDigestError(ImageResolutionError):
    def __init__(self, image: str, digest: str) -> None:
        self.image = image
        self.digest = digest
        super().__init__(f"invalid digest {digest} specified for invocation image {image}")


class DigestMismatchError(ImageResolutionError):
    def __init__(self, image: str, digest: str, embedded_digest: str) -> None:
        self.image = image
        self.digest = digest
        self.embedded_digest = embedded_digest
        super().__init__(
            f"The digest {digest} for the image {image} doesn't match the one specified in the image"
        )


class RunError(DriverError):
    """A run could not complete; identifies the run and the stage that failed."""

    def __init__(self, run_id: str, stage: str, reason: str) -> None:
        self.run_id = run_id
        self.stage = stage
        self.reason = reason
        super().__init__(f"run {run_id} failed during {stage}: {reason}")


class StagingFailedError(RunError):
    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(run_id, "staging", reason)


class HarvestFailedError(RunError):
    """Outputs could not all be read; ``outputs`` holds the ones that were."""

    def __init__(self, run_id: str, reason: str, outputs: Mapping[str, str]) -> None:
        self.outputs = dict(outputs)
        super().__init__(run_id, "harvest", reason)


class SecretCreationFailedError(RunError):
    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(run_id, "secret creation", reason)


class JobCreationFailedError(RunError):
    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(run_id, "job creation", reason)


class RunFailedError(RunError):
    def __init__(self, run_id: str, reason: str, exit_code: int | None = None) -> None:
        self.exit_code = exit_code
        detail = reason if exit_code is None else f"{reason} (exit code {exit_code})"
        super().__init__(run_id, "execution", detail)


class RunTimedOutError(RunError):
    def __init__(self, run_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(run_id, "execution", f"job did not complete within {timeout:g}s")


class CleanupFailedError(RunError):
    """Logged by the driver, never raised out of run."""

    def __init__(self, run_id: str, reason: str) -> None:
        super().__init__(run_id, "cleanup", reason)
