# /src/conda_autoenv/management/validation_manager.py

import re
import shutil
from typing import Callable, Optional

import structlog

from ..data.config_schemas import AutoEnvConfig, StrictnessLevel
from ..data.environment_schemas import EnvironmentDescriptor
from ..environments.base import run_tool
from ..exceptions import ValidationError

logger = structlog.get_logger(__name__)

COMMAND_KEYWORDS = (
    "curl",
    "wget",
    "bash",
    "sh",
    "zsh",
    r"python[0-9.]*",
    "git",
    "nc",
    "eval",
    "exec",
    "sudo",
)

# A keyword followed by any argument is an invocation. Bare package specs
# pass: `- git`, `python=3.8`, and `python >=3.8` where the next token is a
# version constraint, a build selector or a trailing comment.
EXTERNAL_COMMAND_RE = re.compile(
    r"(?:^|[\s;|&(`'\"])(?P<command>" + "|".join(COMMAND_KEYWORDS) + r")"
    r"[ \t]+(?![<>=!]|~=|[0-9*#\[])\S"
    r"|\|[ \t]*(?P<pipe>(?:ba|z)?sh)\b"
    r"|(?P<subst>\$\(|`)",
    re.MULTILINE,
)


class DescriptorValidator:
    """
    Risk-checks an environment descriptor according to the configured
    strictness level.

    A descriptor is declarative data; anything that looks executable, pulls
    in a denylisted package or comes from an untrusted channel is rejected.
    The first violation found raises, and the remaining checks are skipped.
    """

    def __init__(
        self,
        config: AutoEnvConfig,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.config = config
        self._which = which

    def validate(self, descriptor: EnvironmentDescriptor) -> None:
        """
        Validates the descriptor.

        Raises:
            ValidationError: On the first failed check.
        """
        level = StrictnessLevel(self.config.strictness)
        log = logger.bind(descriptor=str(descriptor.path), strictness=int(level))

        if level == StrictnessLevel.NONE:
            log.info("validation.skipped", reason="strictness is 0")
            return

        self.check_syntax(descriptor)
        self.check_external_commands(descriptor)

        if level >= StrictnessLevel.FULL:
            self.check_dangerous_packages(descriptor)
            self.check_trusted_channels(descriptor)

        log.debug("validation.passed")

    def check_syntax(self, descriptor: EnvironmentDescriptor) -> None:
        """Runs yamllint when it is installed; silently skipped otherwise."""
        if not self._which("yamllint"):
            logger.debug("validation.yamllint.unavailable")
            return

        try:
            result = run_tool(["yamllint", "-f", "parsable", str(descriptor.path)])
        except OSError as e:
            logger.debug("validation.yamllint.unavailable", error=str(e))
            return

        if result.returncode != 0:
            first = next(
                (line.strip() for line in (result.stdout or "").splitlines() if line.strip()),
                "yamllint reported errors",
            )
            raise ValidationError(f"invalid YAML syntax in '{descriptor.path}': {first}")

    def check_external_commands(self, descriptor: EnvironmentDescriptor) -> None:
        match = EXTERNAL_COMMAND_RE.search(descriptor.text)
        if match is None:
            return

        line = descriptor.text.count("\n", 0, match.start()) + 1
        if match.group("command"):
            found = match.group("command")
        elif match.group("pipe"):
            found = f"| {match.group('pipe')}"
        else:
            found = match.group("subst")
        raise ValidationError(
            f"external command invocation '{found}' detected in '{descriptor.path}' (line {line})"
        )

    def check_dangerous_packages(self, descriptor: EnvironmentDescriptor) -> None:
        denylist = set(self.config.dangerous_packages)
        for entry in descriptor.dependencies:
            if entry.name is None:
                raise ValidationError(
                    f"unrecognised dependency '{entry.raw.strip()}' in '{descriptor.path}' (line {entry.line})"
                )
            if entry.name in denylist:
                raise ValidationError(
                    f"dangerous package '{entry.name}' detected in '{descriptor.path}' (line {entry.line})"
                )

    def check_trusted_channels(self, descriptor: EnvironmentDescriptor) -> None:
        allowlist = set(self.config.trusted_channels)
        for entry in descriptor.channels:
            if entry.name is None or entry.name not in allowlist:
                raise ValidationError(
                    f"untrusted channel '{entry.raw.strip()}' detected in '{descriptor.path}' (line {entry.line})"
                )
        # `channel::package` pins a dependency to a channel of its own.
        for entry in descriptor.dependencies:
            if entry.channel is not None and entry.channel not in allowlist:
                raise ValidationError(
                    f"untrusted channel '{entry.channel}' detected in '{descriptor.path}' (line {entry.line})"
                )
