"""
bangchat/tools/shell.py - ish Shell Tool

Lets the model run a command line as a subprocess. Every invocation passes
through a confirmation gate first: by default the user is asked on the
terminal, and a refusal is reported back to the model as a fatal ish error.

The subprocess gets a copy of the environment with secret variables removed,
stderr merged into stdout, and no stdin. Only the trailing max_output
characters of its output are kept.

Registered commands:
  - ish  -> run argv[1:] without a shell and report the exit code

Parameters ("k=v,..." plugin string):
  - max_output  characters of output kept (default 4096)
  - timeout     seconds before the subprocess is killed (default 60)
  - confirm     "ask" (default) or "yes" to skip the prompt
  - cwd         working directory for the subprocess
"""

from __future__ import annotations

import os
import re
import subprocess
from typing import Callable, Optional

from rich.prompt import Confirm

from bangchat.observability.logger import get_logger
from bangchat.plugins.params import param_float, param_int, param_str, parse_params, warn_unknown
from bangchat.tools.base import BaseTool, ToolIO, command

log = get_logger(__name__)

DEFAULT_MAX_OUTPUT = 4096
DEFAULT_TIMEOUT = 60.0

# Env-var name patterns that indicate secrets. Matching variables are
# stripped from the subprocess environment so `printenv` cannot leak them.
_SECRET_ENV_PATTERNS: list[re.Pattern] = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"API[_-]?KEY",
        r"SECRET",
        r"PASSWORD",
        r"PASSWD",
        r"TOKEN",
        r"CREDENTIAL",
        r"PRIVATE[_-]?KEY",
        r"ACCESS[_-]?KEY",
        r"OPENAI",
        r"DATABASE[_-]?URL",
        r"PGPASSWORD",
        r"AWS[_-]",
        r"GCP[_-]",
        r"AZURE[_-]",
    ]
]

_ISH_HELP = (
    "ish [commandline] - executing commands\n"
    "ish executes the given command like a normal shell would, via a subprocess.\n"
    "Interactive applications cannot be used. For example, to edit a file use "
    "sed instead of vim or emacs.\n"
    "NOTE: ish just executes the specified command, so you can use "
    "\"[command] --help\" to see help."
)


def _safe_env() -> dict[str, str]:
    """Return a copy of os.environ with secret variables removed."""
    return {
        key: value
        for key, value in os.environ.items()
        if not any(pat.search(key) for pat in _SECRET_ENV_PATTERNS)
    }


def _ask_user(command_line: str) -> bool:
    return Confirm.ask(
        f'ish: User prompt: Do you allow to run command "{command_line}"?',
        default=False,
    )


class ShellTool(BaseTool):
    name = "ish"
    description = "Shell environment"

    def __init__(
        self,
        max_output: int = DEFAULT_MAX_OUTPUT,
        timeout: float = DEFAULT_TIMEOUT,
        confirm: Optional[Callable[[str], bool]] = None,
        cwd: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        if max_output < 1:
            raise ValueError("parameter 'max_output' must be >= 1")
        if timeout <= 0:
            raise ValueError("parameter 'timeout' must be > 0")
        super().__init__(name=name)
        self._max_output = max_output
        self._timeout = timeout
        self._confirm = confirm or _ask_user
        self._cwd = cwd

    @command(description=_ISH_HELP)
    def ish(self, argv: list[str], io: ToolIO) -> int:
        args = argv[1:]
        command_line = " ".join(args)
        if not args:
            io.error("ish: error while executing subprocess: no command given\n")
            return 1

        if not self._confirm(command_line):
            log.info("ish.rejected", command=command_line)
            io.error("ish: Fatal: Operation was rejected by User.\n")
            return 1

        log.info("ish.exec", command=command_line, timeout=self._timeout)
        try:
            proc = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self._timeout,
                cwd=self._cwd,
                env=_safe_env(),
                check=False,
            )
        except subprocess.TimeoutExpired:
            log.warning("ish.timeout", command=command_line, timeout=self._timeout)
            io.error(
                f"ish: error while executing subprocess: timed out after "
                f"{self._timeout:g} seconds\n"
            )
            return 1
        except OSError as e:
            log.warning("ish.spawn_failed", command=command_line, error=str(e))
            io.error(f"ish: error while executing subprocess: {e}\n")
            return 1

        output = proc.stdout.decode("utf-8", errors="replace")
        if len(output) > self._max_output:
            io.write(
                f"{output[-self._max_output:]}\n"
                f"ish: WARNING: Output length exceed limit {self._max_output}, "
                f"so some leading output are discarded.\n"
            )
        else:
            io.write(f"{output}\n")
        io.write(f"ish: subprocess finished with exit code {proc.returncode}\n")
        log.debug("ish.finished", command=command_line, exit_code=proc.returncode)
        return 0


def create_tool(params: str = "") -> ShellTool:
    opts = parse_params(params)
    warn_unknown(opts, {"max_output", "timeout", "confirm", "cwd", "name"}, plugin="ish")
    mode = param_str(opts, "confirm", "ask")
    if mode not in ("ask", "yes"):
        raise ValueError(f"parameter 'confirm' must be 'ask' or 'yes', got {mode!r}")
    return ShellTool(
        max_output=param_int(opts, "max_output", DEFAULT_MAX_OUTPUT),
        timeout=param_float(opts, "timeout", DEFAULT_TIMEOUT),
        confirm=(lambda _cmd: True) if mode == "yes" else None,
        cwd=param_str(opts, "cwd"),
        name=param_str(opts, "name"),
    )
