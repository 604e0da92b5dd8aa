import shutil
from typing import Callable, Optional

import structlog

from ..data.config_schemas import AutoEnvConfig, ManagerKind, VenvToolKind
from ..data.environment_schemas import EnvironmentRecord
from ..environments.base import EnvironmentManager, VenvTool
from ..environments.conda_provider import CondaManager, MambaManager
from ..environments.venv_provider import StdlibVenv, UvVenv

logger = structlog.get_logger(__name__)

Which = Callable[[str], Optional[str]]

# Path fragments that identify an installation driven by mamba.
MAMBA_MARKERS = ("micromamba", "mambaforge", "miniforge", "mamba")


def select_manager(config: AutoEnvConfig, which: Which = shutil.which) -> ManagerKind:
    """
    Picks the declarative manager for this invocation.

    Mamba is used only when it is the configured preference *and* it is on
    PATH; conda is the unconditional fallback. Availability is probed every
    time because it can change between shell sessions.
    """
    if config.package_manager == ManagerKind.MAMBA and which("mamba"):
        return ManagerKind.MAMBA
    return ManagerKind.CONDA


def select_venv_tool(config: AutoEnvConfig, which: Which = shutil.which) -> VenvToolKind:
    """Picks uv when preferred and installed, the stdlib venv module otherwise."""
    if config.venv_tool == VenvToolKind.UV and which("uv"):
        return VenvToolKind.UV
    return VenvToolKind.VENV


def build_manager(kind: ManagerKind) -> EnvironmentManager:
    if kind == ManagerKind.MAMBA:
        return MambaManager()
    return CondaManager()


def build_venv_tool(kind: VenvToolKind, config: AutoEnvConfig) -> VenvTool:
    if kind == VenvToolKind.UV:
        return UvVenv()
    return StdlibVenv(python_executable=config.python_executable)


def infer_owner(
    record: EnvironmentRecord, default: ManagerKind, which: Which = shutil.which
) -> ManagerKind:
    """
    Works out which manager created a listed environment from its path, so
    that it is activated by the same tool. Falls back to `default` when the
    path carries no marker or mamba is not installed.
    """
    path = str(record.path).lower()
    if any(marker in path for marker in MAMBA_MARKERS) and which("mamba"):
        owner = ManagerKind.MAMBA
    elif "conda" in path and which("conda"):
        owner = ManagerKind.CONDA
    else:
        owner = default
    logger.debug("manager_selector.owner", env=record.name, path=path, owner=owner.value)
    return owner
