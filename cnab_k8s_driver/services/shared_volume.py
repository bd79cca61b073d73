"""Filesystem bridge between the driver and the invocation image.

The driver and the Job's pod mount the same PersistentVolumeClaim. Each run owns
one directory on that volume:

    <root>/<run_id>/inputs/<container path>                 staged before the Job starts
    <root>/<run_id>/outputs/<path under /cnab/app/outputs>  written by the image, harvested after

Inside the container every input file is mounted at its own path from the
``inputs`` sub-path, and ``/cnab/app/outputs`` is mounted from the ``outputs`` sub-path.
"""

import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import Mapping

from cnab_k8s_driver.domain.exceptions import HarvestFailedError, StagingFailedError
from cnab_k8s_driver.domain.models import RunContext

SHARED_VOLUME_LAYOUT_VERSION = 1

CONTAINER_OUTPUTS_DIR = PurePosixPath("/cnab/app/outputs")
INPUTS_DIR = "inputs"
OUTPUTS_DIR = "outputs"


def _relative_container_path(container_path: str) -> PurePosixPath:
    path = PurePosixPath(container_path)
    if not path.is_absolute():
        raise ValueError(f"container path {container_path} is not absolute")
    if ".." in path.parts:
        raise ValueError(f"container path {container_path} must not contain '..'")
    return path.relative_to("/")


def output_relative_path(container_path: str) -> PurePosixPath:
    """Location of a declared output relative to the run's outputs directory."""
    path = PurePosixPath(container_path)
    if path.is_relative_to(CONTAINER_OUTPUTS_DIR):
        return path.relative_to(CONTAINER_OUTPUTS_DIR)
    return _relative_container_path(container_path)


class SharedVolumeBridge:
    """Stages inputs into, and harvests outputs from, the shared job volume."""

    def __init__(self, root: str | Path, logger: logging.Logger) -> None:
        self.root = Path(root)
        self.logger = logger

    def run_dir(self, run_id: str) -> Path:
        return self.root / run_id

    def input_sub_path(self, run: RunContext, container_path: str) -> str:
        return str(PurePosixPath(run.run_id, INPUTS_DIR) / _relative_container_path(container_path))

    def outputs_sub_path(self, run: RunContext) -> str:
        return str(PurePosixPath(run.run_id, OUTPUTS_DIR))

    def stage_inputs(self, run: RunContext, files: Mapping[str, str]) -> None:
        """Write every input file and create the empty outputs directory."""
        try:
            run.harvest_path.mkdir(parents=True, exist_ok=True)
            for container_path, content in files.items():
                target = run.staging_path / _relative_container_path(container_path)
                target.parent.mkdir(parents=True, exist_ok=True)
                # Bytes, so line endings reach the container untouched
                target.write_bytes(content.encode("utf-8"))
                self.logger.debug(f"Staged input {container_path} at {target}")
        except (OSError, ValueError) as e:
            raise StagingFailedError(run.run_id, str(e)) from e

    def harvest_outputs(self, run: RunContext, outputs: Mapping[str, str]) -> dict[str, str]:
        """Read declared outputs byte for byte as UTF-8.

        Missing files are skipped. Other read errors, undecodable content included, raise after all are tried.
        """
        collected: dict[str, str] = {}
        errors: list[str] = []

        for container_path, name in outputs.items():
            try:
                source = run.harvest_path / output_relative_path(container_path)
                collected[name] = source.read_bytes().decode("utf-8")
            except FileNotFoundError:
                self.logger.debug(f"Output {name} was not produced at {container_path}")
            except (OSError, ValueError) as e:
                errors.append(f"{name} ({container_path}): {e}")

        if errors:
            raise HarvestFailedError(run.run_id, "; ".join(errors), collected)
        return collected

    def discard(self, run: RunContext) -> None:
        """Remove the run's directory from the shared volume."""
        if run.run_dir.exists():
            shutil.rmtree(run.run_dir)
            self.logger.debug(f"Removed run directory {run.run_dir}")
