# /src/conda_autoenv/management/resolver.py

import os
import shutil
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

import structlog
from rich.console import Console

from ..data.config_schemas import (
    AutoEnvConfig,
    ManagerKind,
    StrictnessLevel,
    VenvToolKind,
)
from ..data.environment_schemas import (
    ActiveEnvironment,
    EnvironmentKind,
    EnvironmentRecord,
    Resolution,
    ResolutionState,
)
from ..environments.base import EnvironmentManager, VenvTool
from ..exceptions import ActivationError, ConfigError, MissingNameError
from ..utils import same_path
from .descriptor_parser import read_descriptor
from .directory_matcher import is_conda_envs_dir, is_target_directory
from .manager_selector import (
    build_manager,
    build_venv_tool,
    infer_owner,
    select_manager,
    select_venv_tool,
)
from .validation_manager import DescriptorValidator

logger = structlog.get_logger(__name__)
# stdout belongs to the shell hook, so every human-readable line goes to stderr.
console = Console(stderr=True, highlight=False, markup=False)

ManagerFactory = Callable[[ManagerKind], EnvironmentManager]
VenvToolFactory = Callable[[VenvToolKind], VenvTool]


class EnvironmentResolver:
    """
    Decides, for one directory and one configuration, whether an environment
    should be activated, created and activated, or left alone.

    A resolver is cheap to build and holds no state between passes; the hook
    builds a fresh one on every prompt redraw.
    """

    def __init__(
        self,
        config: AutoEnvConfig,
        cwd: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        manager_factory: ManagerFactory = build_manager,
        venv_tool_factory: Optional[VenvToolFactory] = None,
    ):
        self.config = config
        self.cwd = Path(cwd) if cwd is not None else Path.cwd()
        self.active = ActiveEnvironment.from_environ(
            os.environ if environ is None else environ
        )
        self._which = which
        self._manager_factory = manager_factory
        self._venv_tool_factory = venv_tool_factory or (
            lambda kind: build_venv_tool(kind, config)
        )

    def target_directories(self, manager: EnvironmentManager) -> List[str]:
        """The configured targets, or the manager's envs_dirs when so configured."""
        if self.config.env_directories:
            return list(self.config.env_directories)
        if self.config.target_source == "manager":
            return [str(root) for root in manager.storage_roots()]
        return []

    def resolve_and_activate(self) -> Resolution:
        """
        Runs one resolution pass for the current directory.

        Returns:
            The Resolution; its script (if any) must be evaluated by the shell.

        Raises:
            AutoEnvError: A subclass naming the failed step. Nothing is retried.
        """
        manager_kind = select_manager(self.config, self._which)
        manager = self._manager_factory(manager_kind)
        log = logger.bind(cwd=str(self.cwd), manager=manager_kind.value)

        if not is_target_directory(self.cwd, self.target_directories(manager)):
            log.debug("resolver.out_of_scope")
            return Resolution(state=ResolutionState.OUT_OF_SCOPE)

        descriptor_path = self.cwd / self.config.descriptor_filename
        if descriptor_path.is_file():
            if not os.access(descriptor_path, os.R_OK):
                raise ConfigError(f"descriptor '{descriptor_path}' is not readable")
            return self._resolve_descriptor(descriptor_path, manager_kind, manager)

        return self._resolve_subfolders(manager)

    # --- Descriptor present ---

    def _resolve_descriptor(
        self,
        descriptor_path: Path,
        manager_kind: ManagerKind,
        manager: EnvironmentManager,
    ) -> Resolution:
        descriptor = read_descriptor(descriptor_path)
        DescriptorValidator(self.config, self._which).validate(descriptor)
        if self.config.strictness == StrictnessLevel.NONE:
            console.print(
                f"Validation skipped (strictness is 0) for {descriptor_path.name}."
            )

        name = descriptor.name
        if not name:
            raise MissingNameError(
                f"could not determine environment name from '{descriptor_path}'"
            )

        local_env = self.cwd / self.config.local_env_dir
        if self.active.is_named(name) or self.active.is_prefix(local_env):
            logger.debug("resolver.already_active", env=name)
            return Resolution(
                state=ResolutionState.ALREADY_ACTIVE,
                kind=EnvironmentKind.DECLARATIVE_MANAGED,
                target=name,
            )

        # Placement needs a manager subprocess, so it waits until the
        # environment actually has to be activated or created.
        central = is_conda_envs_dir(self.cwd, manager.storage_roots())
        local_prefix = None if central else local_env
        log = logger.bind(env=name, placement="central" if central else "local")

        record = self._find_record(manager.list_environments(), name, local_prefix)
        if record is not None:
            owner_kind = infer_owner(record, manager_kind, self._which)
            owner = manager if owner_kind == manager_kind else self._manager_factory(owner_kind)
            target = record.name if record.name == name else record.path
            console.print(f"Activating existing {owner.executable} environment '{name}'...")
            log.info("resolver.activate_existing", owner=owner_kind.value, target=str(target))
            script = owner.activate(target)
            return Resolution(
                state=ResolutionState.ACTIVATED_EXISTING,
                kind=EnvironmentKind.DECLARATIVE_MANAGED,
                target=str(target),
                script=script,
            )

        console.print(
            f"{manager.executable} environment '{name}' doesn't exist. Creating and activating..."
        )
        log.info("resolver.create", prefix=str(local_prefix) if local_prefix else None)
        manager.create(descriptor_path, prefix=local_prefix)

        target = local_prefix if local_prefix is not None else name
        try:
            script = manager.activate(target)
        except ActivationError as e:
            raise ActivationError(
                f"environment '{name}' was created but could not be activated: {e.message}",
                after_create=True,
            )
        return Resolution(
            state=ResolutionState.CREATED,
            kind=EnvironmentKind.DECLARATIVE_MANAGED,
            target=str(target),
            script=script,
        )

    @staticmethod
    def _find_record(
        records: Sequence[EnvironmentRecord], name: str, local_prefix: Optional[Path]
    ) -> Optional[EnvironmentRecord]:
        """Exact name match first, then (for local placement) the prefix path."""
        for record in records:
            if record.name == name:
                return record
        if local_prefix is not None:
            for record in records:
                if same_path(str(record.path), local_prefix):
                    return record
            if (local_prefix / "conda-meta").is_dir():
                # Created by hand or by another machine; not registered yet.
                return EnvironmentRecord(name="", path=local_prefix)
        return None

    # --- Descriptor absent ---

    def _subfolder_candidates(self) -> List[Tuple[str, EnvironmentKind]]:
        candidates = [
            ("venv", EnvironmentKind.LIGHTWEIGHT_VENV),
            (".venv", EnvironmentKind.DOTFILE_VENV),
        ]
        fallback = self.config.fallback_venv_dir
        if fallback not in ("venv", ".venv"):
            candidates.append((fallback, self._venv_kind_for(fallback, None)))
        return candidates

    def _venv_kind_for(
        self, dirname: str, tool_kind: Optional[VenvToolKind]
    ) -> EnvironmentKind:
        if tool_kind == VenvToolKind.UV or (self.cwd / "uv.lock").exists():
            return EnvironmentKind.UV_MANAGED
        if dirname.startswith("."):
            return EnvironmentKind.DOTFILE_VENV
        return EnvironmentKind.LIGHTWEIGHT_VENV

    def _resolve_subfolders(self, manager: EnvironmentManager) -> Resolution:
        envs_dir = self.cwd / self.config.local_env_dir
        if envs_dir.is_dir():
            if self.active.is_prefix(envs_dir):
                return Resolution(
                    state=ResolutionState.ALREADY_ACTIVE,
                    kind=EnvironmentKind.RAW_SUBFOLDER,
                    target=str(envs_dir),
                )
            console.print(
                f"{self.config.descriptor_filename} not found, activating ./{self.config.local_env_dir}..."
            )
            logger.info("resolver.activate_subfolder", path=str(envs_dir))
            return Resolution(
                state=ResolutionState.ACTIVATED_SUBFOLDER,
                kind=EnvironmentKind.RAW_SUBFOLDER,
                target=str(envs_dir),
                script=manager.activate(envs_dir),
            )

        tool_kind = select_venv_tool(self.config, self._which)
        venv_tool = self._venv_tool_factory(tool_kind)

        for dirname, kind in self._subfolder_candidates():
            venv_path = self.cwd / dirname
            if not venv_path.is_dir():
                continue
            if kind == EnvironmentKind.DOTFILE_VENV and (self.cwd / "uv.lock").exists():
                kind = EnvironmentKind.UV_MANAGED
            if self.active.is_venv(venv_path):
                return Resolution(
                    state=ResolutionState.ALREADY_ACTIVE, kind=kind, target=str(venv_path)
                )
            console.print(f"Activating virtual environment ./{dirname}...")
            logger.info("resolver.activate_venv", path=str(venv_path), kind=kind.value)
            return Resolution(
                state=ResolutionState.ACTIVATED_SUBFOLDER,
                kind=kind,
                target=str(venv_path),
                script=venv_tool.activate(venv_path),
            )

        if not self.config.create_fallback_venv:
            logger.debug("resolver.nothing_found")
            return Resolution(state=ResolutionState.NOTHING_FOUND)

        return self._create_fallback_venv(venv_tool, tool_kind)

    def _create_fallback_venv(
        self, venv_tool: VenvTool, tool_kind: VenvToolKind
    ) -> Resolution:
        dirname = self.config.fallback_venv_dir
        venv_path = self.cwd / dirname
        kind = self._venv_kind_for(dirname, tool_kind)

        console.print(
            f"No environment found. Creating a new {venv_tool.executable} environment in ./{dirname}..."
        )
        logger.info("resolver.create_venv", path=str(venv_path), tool=tool_kind.value)
        venv_tool.create(venv_path)

        try:
            script = venv_tool.activate(venv_path)
        except ActivationError as e:
            raise ActivationError(
                f"virtual environment '{venv_path}' was created but could not be activated: {e.message}",
                after_create=True,
            )
        return Resolution(
            state=ResolutionState.CREATED_VENV,
            kind=kind,
            target=str(venv_path),
            script=script,
        )
