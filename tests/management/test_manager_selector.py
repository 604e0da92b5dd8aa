from pathlib import Path

import pytest

from conda_autoenv.data.config_schemas import AutoEnvConfig, ManagerKind, VenvToolKind
from conda_autoenv.data.environment_schemas import EnvironmentRecord
from conda_autoenv.environments.conda_provider import CondaManager, MambaManager
from conda_autoenv.environments.venv_provider import StdlibVenv, UvVenv
from conda_autoenv.management.manager_selector import (
    build_manager,
    build_venv_tool,
    infer_owner,
    select_manager,
    select_venv_tool,
)


def which_for(*available):
    return lambda name: f"/usr/bin/{name}" if name in available else None


@pytest.mark.parametrize(
    "preferred, available, expected",
    [
        ("mamba", ("mamba", "conda"), ManagerKind.MAMBA),
        ("mamba", ("conda",), ManagerKind.CONDA),
        ("mamba", (), ManagerKind.CONDA),
        ("conda", ("mamba", "conda"), ManagerKind.CONDA),
    ],
)
def test_select_manager_prefers_mamba_only_when_installed(preferred, available, expected):
    config = AutoEnvConfig(package_manager=preferred)

    assert select_manager(config, which=which_for(*available)) == expected


def test_select_venv_tool_falls_back_to_stdlib():
    config = AutoEnvConfig(venv_tool="uv")

    assert select_venv_tool(config, which=which_for("uv")) == VenvToolKind.UV
    assert select_venv_tool(config, which=which_for()) == VenvToolKind.VENV
    assert select_venv_tool(AutoEnvConfig(), which=which_for("uv")) == VenvToolKind.VENV


def test_build_manager_returns_matching_adapter():
    assert isinstance(build_manager(ManagerKind.MAMBA), MambaManager)
    conda = build_manager(ManagerKind.CONDA)
    assert isinstance(conda, CondaManager) and not isinstance(conda, MambaManager)


def test_build_venv_tool_uses_configured_python():
    config = AutoEnvConfig(python_executable="python3.11")

    tool = build_venv_tool(VenvToolKind.VENV, config)

    assert isinstance(tool, StdlibVenv)
    assert tool.python_executable == "python3.11"
    assert isinstance(build_venv_tool(VenvToolKind.UV, config), UvVenv)


@pytest.mark.parametrize(
    "path, available, expected",
    [
        ("/home/u/micromamba/envs/ml", ("mamba", "conda"), ManagerKind.MAMBA),
        ("/home/u/miniforge3/envs/ml", ("mamba", "conda"), ManagerKind.MAMBA),
        ("/home/u/miniconda3/envs/ml", ("mamba", "conda"), ManagerKind.CONDA),
        ("/srv/envs/ml", ("mamba", "conda"), ManagerKind.MAMBA),
    ],
)
def test_infer_owner_from_path_markers(path, available, expected):
    record = EnvironmentRecord(name="ml", path=Path(path))

    assert infer_owner(record, ManagerKind.MAMBA, which=which_for(*available)) == expected


def test_infer_owner_without_any_marker_uses_default():
    record = EnvironmentRecord(name="ml", path=Path("/srv/envs/ml"))

    assert infer_owner(record, ManagerKind.CONDA, which=which_for("mamba")) == ManagerKind.CONDA


def test_mamba_marker_without_mamba_installed_uses_default():
    record = EnvironmentRecord(name="ml", path=Path("/home/u/mambaforge/envs/ml"))

    assert infer_owner(record, ManagerKind.CONDA, which=which_for("conda")) == ManagerKind.CONDA
