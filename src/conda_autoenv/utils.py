# ~/repositories/conda-autoenv/src/conda_autoenv/utils.py
import os
from pathlib import Path
from typing import Mapping, Optional

# --- Centralized Path Constant ---
# Single source of truth for where the user's config.yaml lives.
AUTOENV_HOME = Path(
    os.getenv("CONDA_AUTOENV_HOME", Path.home() / ".config" / "conda-autoenv")
)

ENV_PREFIX = "CONDA_AUTOENV_"


def env_flag(name: str, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Reads a boolean-ish environment variable ("1", "true", "yes", "on")."""
    source = os.environ if environ is None else environ
    return source.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


def same_path(left: Optional[str], right: Optional[Path]) -> bool:
    """
    Compares a path-like string from the environment with a filesystem path.

    Both sides are resolved, so trailing slashes and symlinked parents do not
    cause false negatives. An empty or missing value never matches.
    """
    if not left or right is None:
        return False
    try:
        return Path(left).expanduser().resolve() == Path(right).resolve()
    except OSError:
        return False
