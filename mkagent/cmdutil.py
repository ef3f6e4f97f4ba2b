"""Run external commands with a timeout and collect their output."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
"""Seconds after which a command is terminated when no timeout is given."""

KILL_AFTER = 10.0
"""Seconds to wait after terminating a command before killing it."""

IS_WINDOWS = os.name == "nt"

_SHELL: tuple[str, ...] = ("cmd", "/U", "/c") if IS_WINDOWS else ("sh", "-c")


@dataclass(frozen=True)
class CommandOption:
    """How a command is run: as which user, with which extra environment, for how long."""

    user: str = ""
    env: Sequence[str] = ()
    timeout: float = 0.0


@dataclass(frozen=True)
class CommandResult:
    """Output and exit code of a finished command."""

    stdout: str
    stderr: str
    exit_code: int


class CommandError(Exception):
    """A command could not be run to completion."""

    def __init__(
        self,
        message: str,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = -1,
    ) -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class CommandTimeoutError(CommandError):
    """A command ran longer than its timeout and was stopped by a signal."""

    def __init__(self, stdout: str, stderr: str, exit_code: int) -> None:
        super().__init__("command timed out", stdout, stderr, exit_code)


def decode_output(data: bytes, windows: bool = IS_WINDOWS) -> str:
    """Decode captured output; on Windows, UTF-16LE output is recognised and decoded."""
    raw = data.decode("utf-8", errors="surrogateescape")
    if not windows or len(data) % 2 != 0 or 0 not in data:
        return raw
    return data.decode("utf-16-le", errors="replace")


def run_command(command: str, option: CommandOption | None = None) -> CommandResult:
    """Run a command line through the system shell."""
    if IS_WINDOWS:
        command = command.rstrip("\r\n")
    return run_command_args([*_SHELL, command], option)


def run_command_args(
    args: Sequence[str], option: CommandOption | None = None
) -> CommandResult:
    """Run a command given as an argument list.

    Raises CommandError when the command cannot be started and
    CommandTimeoutError when it had to be stopped after its timeout.
    """
    option = option or CommandOption()
    original = list(args)
    if not original:
        raise ValueError("no command given")
    argv = list(original)
    if option.user:
        if IS_WINDOWS:
            logger.warning("RunCommand ignore option: user = %r", option.user)
        else:
            argv = ["sudo", "-Eu", option.user, *argv]

    timeout = option.timeout or DEFAULT_TIMEOUT
    extra = {} if IS_WINDOWS else {"start_new_session": True}
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=_build_env(option.env),
            **extra,
        )
    except OSError as exc:
        error = _start_error(argv[0], exc)
        logger.error("RunCommand error. command: %s, error: %s", original, error)
        raise error from exc

    timed_out = False
    with proc:
        try:
            out, err = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            _stop(proc, force=False)
            try:
                out, err = proc.communicate(timeout=KILL_AFTER)
            except subprocess.TimeoutExpired:
                _stop(proc, force=True)
                out, err = proc.communicate()

    stdout = decode_output(out)
    stderr = decode_output(err)
    returncode = proc.returncode
    signaled = returncode < 0
    exit_code = 128 - returncode if signaled else returncode

    if timed_out and (IS_WINDOWS or signaled):
        error = CommandTimeoutError(stdout, stderr, exit_code)
        logger.error("RunCommand error. command: %s, error: %s", original, error)
        raise error
    return CommandResult(stdout, stderr, exit_code)


def _build_env(extra: Sequence[str]) -> dict[str, str]:
    env = dict(os.environ)
    for entry in extra:
        key, sep, value = entry.partition("=")
        if sep:
            env[key] = value
    return env


def _stop(proc: subprocess.Popen, force: bool) -> None:
    if IS_WINDOWS:
        if force:
            proc.kill()
        else:
            proc.terminate()
        return
    sig = signal.SIGKILL if force else signal.SIGTERM
    try:
        os.killpg(proc.pid, sig)
    except (ProcessLookupError, PermissionError):
        pass


def _start_error(name: str, exc: OSError) -> CommandError:
    has_path = "/" in name or os.sep in name
    if isinstance(exc, FileNotFoundError):
        code = 127
        if has_path:
            detail = f"fork/exec {name}: no such file or directory"
        else:
            detail = f'exec: "{name}": executable file not found in $PATH'
    elif isinstance(exc, PermissionError):
        code = 126
        detail = f"fork/exec {name}: permission denied"
    else:
        code = -1
        detail = f"fork/exec {name}: {exc.strerror or exc}"
    return CommandError(f"exit code: {code}, {detail}", exit_code=code)