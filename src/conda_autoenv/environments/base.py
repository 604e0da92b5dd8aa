import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

import structlog

from ..data.environment_schemas import ActivationScript, EnvironmentRecord

logger = structlog.get_logger(__name__)


def run_tool(command: List[str], cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
    """
    Runs an external environment tool synchronously and captures its output.

    Standard output is captured rather than inherited because the caller's
    stdout is evaluated by the shell hook. No timeout: a hung tool hangs the
    pass until the user interrupts it.
    """
    logger.debug("tool.run", command=" ".join(command), cwd=str(cwd) if cwd else None)
    return subprocess.run(
        command,
        capture_output=True,
        text=True,
        check=False,
        cwd=cwd,
    )


def stderr_tail(result: subprocess.CompletedProcess, lines: int = 3) -> str:
    """The last few non-empty lines a tool wrote, for one-line diagnostics."""
    output = (result.stderr or "").strip() or (result.stdout or "").strip()
    tail = [line.strip() for line in output.splitlines() if line.strip()][-lines:]
    return " | ".join(tail)


class EnvironmentManager(ABC):
    """
    The contract for declarative environment managers (conda, mamba).

    A manager lists named environments, creates them from a descriptor and
    produces the shell code that activates them.
    """

    #: Name of the executable on PATH.
    executable: str = ""

    @abstractmethod
    def list_environments(self) -> List[EnvironmentRecord]:
        """Returns every environment the manager knows about."""
        raise NotImplementedError

    @abstractmethod
    def storage_roots(self) -> List[Path]:
        """Returns the directories where the manager stores named environments."""
        raise NotImplementedError

    @abstractmethod
    def create(self, descriptor_path: Path, prefix: Optional[Path] = None) -> None:
        """
        Creates an environment from a descriptor file.

        Args:
            descriptor_path: The environment.yml to build from.
            prefix: When given, the environment is created at this path
                    instead of under its name in the central store.

        Raises:
            CreationError: The manager exited non-zero.
        """
        raise NotImplementedError

    @abstractmethod
    def activate(self, target: Union[str, Path]) -> ActivationScript:
        """
        Returns the shell code that activates an environment by name or path.

        Raises:
            ActivationError: The target cannot be activated.
        """
        raise NotImplementedError


class VenvTool(ABC):
    """The contract for lightweight virtual-environment tools (venv, uv)."""

    executable: str = ""

    @abstractmethod
    def create(self, path: Path) -> None:
        """
        Creates a virtual environment at `path`.

        Raises:
            CreationError: The tool exited non-zero or could not be started.
        """
        raise NotImplementedError

    @abstractmethod
    def activate(self, path: Path) -> ActivationScript:
        """
        Returns the shell code that sources the environment's activate script.

        Raises:
            ActivationError: The environment has no activation entry point.
        """
        raise NotImplementedError
