from cnab_k8s_driver.core.utils import StringEnum


class RunPhase(StringEnum):
    """Lifecycle of a single run."""

    _terminal: bool

    CREATED = "created"
    STAGED = "staged"
    SECRET_CREATED = "secret_created"
    JOB_CREATED = "job_created"
    POLLING = "polling"
    SUCCEEDED = ("succeeded", True)
    FAILED = ("failed", True)
    TIMED_OUT = ("timed_out", True)
    COLLECTED = "collected"
    CLEANED = "cleaned"

    def __new__(cls, value: str, terminal: bool = False) -> "RunPhase":
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj._terminal = terminal
        return obj

    @property
    def is_terminal(self) -> bool:
        return self._terminal


RUN_TERMINAL = frozenset(p for p in RunPhase if p.is_terminal)


class ImageType(StringEnum):
    DOCKER = "docker"
    OCI = "oci"
