from __future__ import annotations

import time
from dataclasses import dataclass as std_dataclass
from dataclasses import field
from pathlib import Path
from typing import BinaryIO, Optional

from pydantic.dataclasses import dataclass

from cnab_k8s_driver.domain.enums import ImageType, RunPhase


@dataclass(frozen=True)
class InvocationImage:
    """Invocation image reference as declared by the bundle."""

    image: str
    digest: Optional[str] = None
    image_type: str = ImageType.OCI


@std_dataclass(frozen=True)
class Operation:
    """A single request to run an invocation image for one action."""

    action: str
    installation: str
    image: InvocationImage
    environment: dict[str, str] = field(default_factory=dict)
    # in-container path -> content
    files: dict[str, str] = field(default_factory=dict)
    # in-container path -> output name
    outputs: dict[str, str] = field(default_factory=dict)
    out: Optional[BinaryIO] = None
    revision: Optional[str] = None
    bundle: Optional[str] = None


@dataclass
class OperationResult:
    outputs: dict[str, str] = field(default_factory=dict)


@std_dataclass
class RunContext:
    """Per-run state; the objects it names are owned by this run alone."""

    run_id: str
    namespace: str
    run_dir: Path
    phase: RunPhase = RunPhase.CREATED
    secret_name: Optional[str] = None
    job_name: Optional[str] = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def staging_path(self) -> Path:
        return self.run_dir / "inputs"

    @property
    def harvest_path(self) -> Path:
        return self.run_dir / "outputs"

    @property
    def has_cluster_objects(self) -> bool:
        return self.secret_name is not None or self.job_name is not None

    def advance(self, phase: RunPhase) -> None:
        self.phase = phase
