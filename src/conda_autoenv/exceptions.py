"""
Exceptions raised while resolving, validating, creating or activating an
environment. Every error carries the step that failed so the CLI can print a
single diagnostic line naming it.
"""

from typing import Optional


class AutoEnvError(Exception):
    """Base exception for all conda-autoenv errors."""

    step = "resolve"

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if step:
            self.step = step

    def __str__(self) -> str:
        return f"[{self.step}] {self.message}"


class ConfigError(AutoEnvError):
    """Configuration is unusable, or the descriptor cannot be read."""

    step = "config"


class ValidationError(AutoEnvError):
    """The descriptor failed a safety check for the configured strictness."""

    step = "validate"


class MissingNameError(AutoEnvError):
    """The descriptor has no usable `name:` entry."""

    step = "name"


class CreationError(AutoEnvError):
    """The external tool reported a failure while creating an environment."""

    step = "create"


class ActivationError(AutoEnvError):
    """An environment could not be activated."""

    step = "activate"

    def __init__(self, message: str, step: Optional[str] = None, after_create: bool = False):
        super().__init__(message, step)
        # The environment was created successfully but could not be entered.
        self.after_create = after_create
