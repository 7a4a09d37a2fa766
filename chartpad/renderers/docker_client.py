"""Docker-based renderer client utilities."""
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional


class DockerUnavailableError(RuntimeError):
    """Raised when the docker binary cannot be found."""


def docker_available() -> bool:
    return shutil.which("docker") is not None


def run_docker_renderer(image: str, workdir: Path, command: List[str], timeout: Optional[float] = None) -> None:
    if not docker_available():
        raise DockerUnavailableError("docker executable not found on PATH")
    cmd = [
        "docker",
        "run",
        "--rm",
        "-v",
        f"{workdir}:/data",
        "-w",
        "/data",
        image,
    ] + command
    subprocess.run(cmd, check=True, capture_output=True, timeout=timeout)
