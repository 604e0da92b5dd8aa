from pathlib import Path
from typing import Sequence, Union

import structlog

logger = structlog.get_logger(__name__)


def is_target_directory(cwd: Union[str, Path], targets: Sequence[str]) -> bool:
    """
    Checks whether the current directory is in scope for auto-activation.

    A directory is in scope when its path *contains* one of the targets as a
    substring. This is looser than a prefix match: `/home/a/proj-old` matches
    a target of `/home/a/proj`.

    Args:
        cwd: The current working directory.
        targets: The configured target directories.

    Returns:
        True if any target occurs in the path, False otherwise (including when
        no targets are configured).
    """
    targets = [t for t in targets if t]
    if not targets:
        logger.warning(
            "directory_matcher.no_targets",
            hint="set env_directories in config.yaml or CONDA_AUTOENV_DIRECTORIES",
        )
        return False

    current = str(cwd)
    return any(target in current for target in targets)


def is_conda_envs_dir(cwd: Union[str, Path], storage_roots: Sequence[Path]) -> bool:
    """
    Checks whether the current directory lies inside one of the manager's own
    environment-storage roots (its `envs_dirs`).

    New environments created from such a directory go to the central store by
    name, so they are never nested inside another environment's tree.
    """
    current = Path(cwd).resolve()
    for root in storage_roots:
        try:
            if current.is_relative_to(Path(root).expanduser().resolve()):
                return True
        except (OSError, ValueError):
            # e.g. a root on another drive on windows
            continue
    return False
