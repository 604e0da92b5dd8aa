import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import structlog
import yaml
from pydantic import ValidationError as PydanticValidationError

from ..data.config_schemas import AutoEnvConfig
from ..exceptions import ConfigError
from ..utils import AUTOENV_HOME, ENV_PREFIX

logger = structlog.get_logger(__name__)

CONFIG_FILENAME = "config.yaml"

# Environment variables that override scalar settings from config.yaml.
ENV_OVERRIDES = {
    "PACKAGE_MANAGER": "package_manager",
    "VENV_TOOL": "venv_tool",
    "STRICTNESS": "strictness",
    "TARGET_SOURCE": "target_source",
    "DESCRIPTOR": "descriptor_filename",
}


class ConfigManager:
    """
    Builds the immutable AutoEnvConfig from `config.yaml` and environment
    variable overrides.
    """

    def __init__(
        self,
        home_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            home_path: Directory holding config.yaml; defaults to AUTOENV_HOME.
                       Mainly useful for tests.
            environ: Mapping to read overrides from; defaults to os.environ.
        """
        self._environ = os.environ if environ is None else environ
        self._home = home_path or Path(
            self._environ.get(f"{ENV_PREFIX}HOME", "") or AUTOENV_HOME
        )
        self.config_file = self._home / CONFIG_FILENAME

    def _load_file(self) -> Dict[str, Any]:
        if not self.config_file.exists():
            logger.debug("config_manager.no_file", path=str(self.config_file))
            return {}
        try:
            data = yaml.safe_load(self.config_file.read_text())
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot load '{self.config_file}': {e}")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"'{self.config_file}' must contain a mapping of settings")
        return data

    def _overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for suffix, field in ENV_OVERRIDES.items():
            value = self._environ.get(f"{ENV_PREFIX}{suffix}")
            if value:
                overrides[field] = value.strip()

        if "strictness" in overrides:
            try:
                overrides["strictness"] = int(overrides["strictness"])
            except ValueError:
                raise ConfigError(
                    f"{ENV_PREFIX}STRICTNESS must be 0, 1 or 2, got '{overrides['strictness']}'"
                )

        directories = self._environ.get(f"{ENV_PREFIX}DIRECTORIES")
        if directories:
            overrides["env_directories"] = [
                entry for entry in directories.split(os.pathsep) if entry
            ]
        return overrides

    def load(self) -> AutoEnvConfig:
        """
        Loads the configuration.

        Raises:
            ConfigError: The file is unreadable or a setting is invalid.
        """
        settings = self._load_file()
        settings.update(self._overrides())
        directories = settings.get("env_directories")
        if isinstance(directories, str):
            directories = [directories]
        if directories:
            settings["env_directories"] = [
                str(Path(str(entry)).expanduser()) for entry in directories if entry
            ]
        try:
            config = AutoEnvConfig.model_validate(settings)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise ConfigError(f"invalid configuration in '{self.config_file}': {problems}")

        logger.debug(
            "config_manager.loaded",
            path=str(self.config_file),
            manager=config.package_manager.value,
            strictness=int(config.strictness),
            targets=len(config.env_directories),
        )
        return config
