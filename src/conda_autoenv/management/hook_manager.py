# /src/conda_autoenv/management/hook_manager.py

import shlex

import structlog

logger = structlog.get_logger(__name__)

HOOK_FUNCTION = "_conda_autoenv"

# The PROMPT_COMMAND merge runs in the user's shell: bash does not export
# PROMPT_COMMAND, so this process never sees the current value.
HOOK_TEMPLATE = """\
# conda-autoenv shell hook (bash)
{function}() {{
    local __autoenv_script __autoenv_status
    __autoenv_script="$(command {executable} resolve)"
    __autoenv_status=$?
    if [ -n "$__autoenv_script" ]; then
        eval "$__autoenv_script" || __autoenv_status=1
    fi
    return $__autoenv_status
}}
if [[ $- == *i* ]]; then
    if [[ "$PROMPT_COMMAND" != *{function}* ]]; then
        PROMPT_COMMAND="{function}${{PROMPT_COMMAND:+; $PROMPT_COMMAND}}"
    fi
    {function}
else
    echo {non_interactive} >&2
fi
"""


class HookInstaller:
    """
    Wires the resolver into bash's per-prompt hook.

    The rendered snippet is meant to be evaluated from `.bashrc`:

        eval "$(conda-autoenv hook)"

    It defines one shell function that runs a resolution pass and evaluates
    the activation code it prints. The function is prepended to
    PROMPT_COMMAND unless the variable already mentions it, so existing
    entries keep their order and re-sourcing `.bashrc` registers it once.
    The snippet then runs the function immediately for the current directory.
    """

    def __init__(self, executable: str = "conda-autoenv"):
        self.executable = executable

    def install_hook(self) -> str:
        """Renders the bash snippet that installs the hook in an interactive shell."""
        logger.debug("hook_manager.render", executable=self.executable)
        return HOOK_TEMPLATE.format(
            function=HOOK_FUNCTION,
            executable=shlex.quote(self.executable),
            non_interactive=shlex.quote(
                f"conda-autoenv: not an interactive shell, hook not installed. "
                f"Use '{self.executable} run --init' to resolve the current directory."
            ),
        )
