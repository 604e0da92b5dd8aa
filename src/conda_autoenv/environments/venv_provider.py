import shlex
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from .base import VenvTool, run_tool, stderr_tail
from ..data.environment_schemas import ActivationScript
from ..exceptions import ActivationError, CreationError

logger = structlog.get_logger(__name__)


def find_activate_script(venv_path: Path) -> Optional[Path]:
    """
    Locates the bash activation entry point of a virtual environment.

    Handles the layout difference between unix (bin/) and windows (Scripts/,
    e.g. under git-bash).
    """
    subdirs = ["Scripts", "bin"] if sys.platform == "win32" else ["bin", "Scripts"]
    for subdir in subdirs:
        candidate = venv_path / subdir / "activate"
        if candidate.is_file():
            return candidate
    return None


class _SourcedVenvTool(VenvTool):
    """Shared creation/activation recipe for tools that build standard venvs."""

    def _create_command(self, path: Path) -> List[str]:
        raise NotImplementedError

    def create(self, path: Path) -> None:
        command = self._create_command(path)
        log = logger.bind(tool=self.executable, path=str(path))
        log.info("venv_provider.create.start")
        try:
            result = run_tool(command, cwd=path.parent)
        except OSError as e:
            raise CreationError(f"could not run '{command[0]}': {e}")

        if result.returncode != 0:
            log.error("venv_provider.create.failed", returncode=result.returncode)
            raise CreationError(
                f"'{' '.join(command)}' exited with {result.returncode}: {stderr_tail(result)}"
            )
        log.info("venv_provider.create.done")

    def activate(self, path: Path) -> ActivationScript:
        script = find_activate_script(path)
        if script is None:
            raise ActivationError(f"no activation script found in '{path}'")
        return ActivationScript(
            description=f"virtual environment at '{path}'",
            commands=[f". {shlex.quote(str(script))}"],
        )


class StdlibVenv(_SourcedVenvTool):
    """Creates environments with `python -m venv`."""

    executable = "venv"

    def __init__(self, python_executable: str = "python3"):
        self.python_executable = python_executable

    def _create_command(self, path: Path) -> List[str]:
        return [self.python_executable, "-m", "venv", str(path)]


class UvVenv(_SourcedVenvTool):
    """Creates environments with `uv venv`, which is considerably faster."""

    executable = "uv"

    def _create_command(self, path: Path) -> List[str]:
        return ["uv", "venv", "--quiet", str(path)]
