from enum import Enum, IntEnum
from typing import List, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StrictnessLevel(IntEnum):
    """Depth of the descriptor safety checks. Each level includes the previous one."""

    NONE = 0
    BASIC = 1
    FULL = 2


class ManagerKind(str, Enum):
    """The declarative environment managers we know how to drive."""

    MAMBA = "mamba"
    CONDA = "conda"


class VenvToolKind(str, Enum):
    """The lightweight virtual-environment tools used as a fallback."""

    VENV = "venv"
    UV = "uv"


DEFAULT_DANGEROUS_PACKAGES = ["curl", "wget", "bash", "sh", "python-pip", "git"]
DEFAULT_TRUSTED_CHANNELS = ["conda-forge", "defaults"]


class AutoEnvConfig(BaseModel):
    """
    The complete, immutable configuration for one resolution pass.

    It is built once by the config manager (file + environment overrides) and
    handed to the resolver at construction; nothing mutates it afterwards.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    package_manager: ManagerKind = Field(
        ManagerKind.MAMBA,
        description="Preferred declarative manager. Falls back to conda if mamba is missing.",
    )
    venv_tool: VenvToolKind = Field(
        VenvToolKind.VENV,
        description="Preferred tool for lightweight fallback environments.",
    )
    strictness: StrictnessLevel = Field(
        StrictnessLevel.BASIC, description="Descriptor validation depth (0-2)."
    )
    dangerous_packages: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DANGEROUS_PACKAGES)
    )
    trusted_channels: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TRUSTED_CHANNELS)
    )
    env_directories: List[str] = Field(
        default_factory=list,
        description="Path prefixes the auto-activation is scoped to.",
    )
    target_source: Literal["config", "manager"] = Field(
        "config",
        description="Where the target directories come from when env_directories is empty.",
    )
    descriptor_filename: str = "environment.yml"
    local_env_dir: str = "envs"
    fallback_venv_dir: str = ".venv"
    create_fallback_venv: bool = True
    python_executable: str = "python3"

    @field_validator("env_directories", mode="before")
    @classmethod
    def _split_directories(cls, value):
        if isinstance(value, str):
            value = [value]
        return value

    @field_validator("env_directories")
    @classmethod
    def _drop_blank_directories(cls, value: List[str]) -> List[str]:
        return [entry for entry in value if entry and entry.strip()]

    def with_targets(self, targets: Sequence[str]) -> "AutoEnvConfig":
        """Returns a copy scoped to exactly the given target directories."""
        return self.model_copy(
            update={"env_directories": [str(t) for t in targets if str(t)]}
        )
