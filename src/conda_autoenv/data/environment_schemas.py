import shlex
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field

from ..utils import same_path


class EnvironmentKind(str, Enum):
    """The kinds of environment the resolver can create or activate."""

    DECLARATIVE_MANAGED = "declarative"
    RAW_SUBFOLDER = "envs-subfolder"
    LIGHTWEIGHT_VENV = "venv"
    DOTFILE_VENV = "dotfile-venv"
    UV_MANAGED = "uv"


class ResolutionState(str, Enum):
    """Terminal states of a single resolution pass."""

    OUT_OF_SCOPE = "out-of-scope"
    ALREADY_ACTIVE = "already-active"
    ACTIVATED_EXISTING = "activated-existing"
    CREATED = "created"
    ACTIVATED_SUBFOLDER = "activated-subfolder"
    CREATED_VENV = "created-venv"
    NOTHING_FOUND = "nothing-found"


class EnvironmentRecord(BaseModel):
    """A single row of a manager's `env list` output."""

    name: str = Field("", description="Empty for path-only (prefix) environments.")
    path: Path
    is_active: bool = False


class DescriptorEntry(BaseModel):
    """One list item from the `channels:` or `dependencies:` section."""

    raw: str
    line: int
    name: Optional[str] = Field(
        None, description="Package or channel name; None when it could not be classified."
    )
    channel: Optional[str] = Field(
        None, description="Channel prefix of a `channel::package` dependency."
    )


class EnvironmentDescriptor(BaseModel):
    """The line-scanned view of an environment descriptor file."""

    path: Path
    text: str
    name: str = ""
    channels: List[DescriptorEntry] = Field(default_factory=list)
    dependencies: List[DescriptorEntry] = Field(default_factory=list)


class ActiveEnvironment(BaseModel):
    """
    Identity of whatever environment is active in the invoking shell.

    Built from the shell's own variables. All comparisons are exact: a name
    must equal the conda environment name and a path must resolve to the
    active prefix.
    """

    conda_name: Optional[str] = None
    conda_prefix: Optional[str] = None
    virtual_env: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "ActiveEnvironment":
        return cls(
            conda_name=environ.get("CONDA_DEFAULT_ENV") or None,
            conda_prefix=environ.get("CONDA_PREFIX") or None,
            virtual_env=environ.get("VIRTUAL_ENV") or None,
        )

    def is_named(self, name: str) -> bool:
        return bool(name) and self.conda_name == name

    def is_prefix(self, path: Path) -> bool:
        return same_path(self.conda_prefix, path)

    def is_venv(self, path: Path) -> bool:
        return same_path(self.virtual_env, path)


class ActivationScript(BaseModel):
    """
    Shell lines that activate an environment inside the user's session.

    The Python process cannot change its parent shell, so activation is
    rendered as bash and evaluated by the hook function.
    """

    description: str
    commands: List[str] = Field(default_factory=list)

    def render(self) -> str:
        failure = shlex.quote(
            f"conda-autoenv: Error: [activate] failed to activate {self.description}"
        )
        lines = [
            f"{command} || {{ echo {failure} >&2; false; }}"
            for command in self.commands
        ]
        return "\n".join(lines) + ("\n" if lines else "")


class Resolution(BaseModel):
    """The outcome of one resolution pass."""

    state: ResolutionState
    kind: Optional[EnvironmentKind] = None
    target: Optional[str] = None
    script: Optional[ActivationScript] = None

    def render(self) -> str:
        return self.script.render() if self.script else ""
