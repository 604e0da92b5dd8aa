import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest
import structlog

from conda_autoenv.data.config_schemas import AutoEnvConfig, ManagerKind, VenvToolKind
from conda_autoenv.data.environment_schemas import ActivationScript, EnvironmentRecord
from conda_autoenv.environments.base import EnvironmentManager, VenvTool
from conda_autoenv.exceptions import ActivationError, CreationError
from conda_autoenv.management.resolver import EnvironmentResolver


class FakeManager(EnvironmentManager):
    """An in-memory EnvironmentManager that records every call."""

    def __init__(self, executable: str = "conda"):
        self.executable = executable
        self.records: List[EnvironmentRecord] = []
        self.roots: List[Path] = []
        self.created: List[tuple] = []
        self.activated: List[Union[str, Path]] = []
        self.fail_create = False
        self.fail_activate = False
        self.roots_queries = 0

    def list_environments(self) -> List[EnvironmentRecord]:
        return list(self.records)

    def storage_roots(self) -> List[Path]:
        self.roots_queries += 1
        return list(self.roots)

    def create(self, descriptor_path: Path, prefix: Optional[Path] = None) -> None:
        if self.fail_create:
            raise CreationError("solver failed")
        self.created.append((descriptor_path, prefix))
        from conda_autoenv.management.descriptor_parser import read_descriptor

        name = read_descriptor(descriptor_path).name
        if prefix is None:
            self.records.append(
                EnvironmentRecord(name=name, path=Path("/opt/conda/envs") / name)
            )
        else:
            self.records.append(EnvironmentRecord(name="", path=prefix))

    def activate(self, target: Union[str, Path]) -> ActivationScript:
        if self.fail_activate:
            raise ActivationError(f"cannot activate '{target}'")
        self.activated.append(target)
        return ActivationScript(
            description=f"{self.executable} environment '{target}'",
            commands=[f"{self.executable} activate {target}"],
        )


class FakeVenvTool(VenvTool):
    """A VenvTool that creates a minimal venv layout on disk."""

    def __init__(self, executable: str = "venv"):
        self.executable = executable
        self.created: List[Path] = []
        self.activated: List[Path] = []
        self.fail_create = False
        self.fail_activate = False

    def create(self, path: Path) -> None:
        if self.fail_create:
            raise CreationError(f"could not create '{path}'")
        (path / "bin").mkdir(parents=True)
        (path / "bin" / "activate").write_text("# activate\n")
        (path / "pyvenv.cfg").write_text("home = /usr/bin\n")
        self.created.append(path)

    def activate(self, path: Path) -> ActivationScript:
        if self.fail_activate:
            raise ActivationError(f"no activation script found in '{path}'")
        self.activated.append(path)
        return ActivationScript(
            description=f"virtual environment at '{path}'",
            commands=[f". {path}/bin/activate"],
        )


@pytest.fixture(autouse=True)
def reset_logging():
    """Keeps structlog/logging configuration from leaking between tests."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


@pytest.fixture
def isolated_autoenv_home(tmp_path: Path, monkeypatch) -> Path:
    """
    Provides an empty config home and points CONDA_AUTOENV_HOME at it, with
    every other CONDA_AUTOENV_* / activation variable removed.
    """
    home = tmp_path / ".config" / "conda-autoenv"
    home.mkdir(parents=True)
    for var in (
        "CONDA_AUTOENV_DIRECTORIES",
        "CONDA_AUTOENV_STRICTNESS",
        "CONDA_AUTOENV_PACKAGE_MANAGER",
        "CONDA_AUTOENV_VENV_TOOL",
        "CONDA_AUTOENV_TARGET_SOURCE",
        "CONDA_AUTOENV_DESCRIPTOR",
        "CONDA_AUTOENV_DEBUG",
        "CONDA_DEFAULT_ENV",
        "CONDA_PREFIX",
        "VIRTUAL_ENV",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("CONDA_AUTOENV_HOME", str(home))
    return home


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "projects" / "demo"
    project.mkdir(parents=True)
    return project


@pytest.fixture
def write_descriptor(project_dir: Path) -> Callable[..., Path]:
    """Writes an environment.yml into the project directory."""

    def _write(content: str, directory: Optional[Path] = None) -> Path:
        path = (directory or project_dir) / "environment.yml"
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def fake_manager() -> FakeManager:
    return FakeManager()


@pytest.fixture
def fake_mamba() -> FakeManager:
    return FakeManager("mamba")


@pytest.fixture
def fake_venv_tool() -> FakeVenvTool:
    return FakeVenvTool()


@pytest.fixture
def no_tools():
    """A `which` that finds nothing on PATH."""
    return lambda name: None


@pytest.fixture
def make_resolver(
    project_dir: Path, fake_manager: FakeManager, fake_venv_tool: FakeVenvTool, no_tools
) -> Callable[..., EnvironmentResolver]:
    """Builds a resolver wired to the fakes and scoped to the project directory."""

    def _make(
        config: Optional[AutoEnvConfig] = None,
        environ: Optional[Dict[str, str]] = None,
        cwd: Optional[Path] = None,
        which=no_tools,
        managers: Optional[Dict[ManagerKind, FakeManager]] = None,
        **overrides,
    ) -> EnvironmentResolver:
        if config is None:
            settings = {"env_directories": [str(project_dir)], "package_manager": "conda"}
            settings.update(overrides)
            config = AutoEnvConfig(**settings)

        def manager_factory(kind: ManagerKind) -> FakeManager:
            if managers and kind in managers:
                return managers[kind]
            return fake_manager

        def venv_tool_factory(kind: VenvToolKind) -> FakeVenvTool:
            return fake_venv_tool

        return EnvironmentResolver(
            config,
            cwd=cwd or project_dir,
            environ=environ or {},
            which=which,
            manager_factory=manager_factory,
            venv_tool_factory=venv_tool_factory,
        )

    return _make
