# /src/conda_autoenv/environments/conda_provider.py

import json
import os
import shlex
from pathlib import Path
from typing import List, Optional, Union

import structlog

from .base import EnvironmentManager, run_tool, stderr_tail
from ..data.environment_schemas import ActivationScript, EnvironmentRecord
from ..exceptions import ActivationError, CreationError

logger = structlog.get_logger(__name__)


def parse_env_list(output: str) -> List[EnvironmentRecord]:
    """
    Parses the table printed by `conda env list` / `mamba env list`.

    The first column is the name and the last column is the path. A row with
    a single column is an environment that only has a prefix path. The `*`
    marker in between flags the active environment.
    """
    records: List[EnvironmentRecord] = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        columns = stripped.split()
        if len(columns) == 1:
            records.append(EnvironmentRecord(name="", path=Path(columns[0])))
            continue
        is_active = "*" in columns[:-1]
        name = "" if columns[0] == "*" else columns[0]
        records.append(
            EnvironmentRecord(name=name, path=Path(columns[-1]), is_active=is_active)
        )
    return records


class CondaManager(EnvironmentManager):
    """
    Drives the `conda` CLI. Mamba is a drop-in replacement with the same
    command contract, so it only changes the executable.
    """

    executable = "conda"

    def list_environments(self) -> List[EnvironmentRecord]:
        try:
            result = run_tool([self.executable, "env", "list"])
        except OSError as e:
            logger.warning("conda_provider.list.unavailable", manager=self.executable, error=str(e))
            return []
        if result.returncode != 0:
            logger.warning(
                "conda_provider.list.failed",
                manager=self.executable,
                error=stderr_tail(result),
            )
            return []
        records = parse_env_list(result.stdout)
        logger.debug("conda_provider.list", manager=self.executable, count=len(records))
        return records

    def storage_roots(self) -> List[Path]:
        try:
            result = run_tool(
                [self.executable, "config", "--show", "envs_dirs", "--json"]
            )
        except OSError as e:
            logger.warning(
                "conda_provider.envs_dirs.unavailable", manager=self.executable, error=str(e)
            )
            return []
        if result.returncode != 0:
            logger.warning(
                "conda_provider.envs_dirs.failed",
                manager=self.executable,
                error=stderr_tail(result),
            )
            return []
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("conda_provider.envs_dirs.unparseable", manager=self.executable)
            return []
        return [Path(entry).expanduser() for entry in payload.get("envs_dirs", [])]

    def create(self, descriptor_path: Path, prefix: Optional[Path] = None) -> None:
        command = [self.executable, "env", "create", "-f", str(descriptor_path), "-q"]
        if prefix is not None:
            command.extend(["-p", str(prefix)])

        log = logger.bind(manager=self.executable, descriptor=str(descriptor_path))
        log.info("conda_provider.create.start", prefix=str(prefix) if prefix else None)
        try:
            result = run_tool(command, cwd=descriptor_path.parent)
        except OSError as e:
            raise CreationError(f"could not run '{self.executable}': {e}")

        if result.returncode != 0:
            log.error("conda_provider.create.failed", returncode=result.returncode)
            raise CreationError(
                f"'{' '.join(command)}' exited with {result.returncode}: {stderr_tail(result)}"
            )
        log.info("conda_provider.create.done")

    def activate(self, target: Union[str, Path]) -> ActivationScript:
        if isinstance(target, Path):
            if not target.is_dir() or not os.access(target, os.X_OK):
                raise ActivationError(
                    f"'{target}' is not an accessible environment directory"
                )
            description = f"{self.executable} environment at '{target}'"
        else:
            if not target:
                raise ActivationError("no environment name to activate")
            description = f"{self.executable} environment '{target}'"

        return ActivationScript(
            description=description,
            commands=[f"{self.executable} activate {shlex.quote(str(target))}"],
        )


class MambaManager(CondaManager):
    """The faster, conda-compatible manager."""

    executable = "mamba"
