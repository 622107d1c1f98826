"""Helpers for running external tools."""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..core.errors import CommandError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Exit status and captured output of an external command."""
    args: List[str]
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error_text(self) -> str:
        """Short description of a failed command for log messages."""
        detail = self.stderr.strip()
        if detail:
            return f"exit code {self.returncode}: {detail}"
        return f"exit code {self.returncode}"


def run_command(args: List[str], stdout_path: Optional[str] = None,
                env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None,
                timeout: Optional[float] = None) -> CommandResult:
    """Run an external command and wait for it to finish.

    Args:
        args: Program and arguments.
        stdout_path: If given, standard output is streamed into this file
            instead of being captured.
        env: Extra environment variables on top of the current environment.
        cwd: Working directory.
        timeout: Seconds to wait before giving up.

    Returns:
        CommandResult with exit status and captured output.

    Raises:
        CommandError: If the program can not be started, the output file can
            not be opened, or the timeout expires.
    """
    args = [str(arg) for arg in args]
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    logger.debug(f"Running command: {' '.join(args)}")

    try:
        if stdout_path:
            with open(stdout_path, 'wb') as out:
                proc = subprocess.run(args, stdout=out, stderr=subprocess.PIPE,
                                      env=full_env, cwd=cwd, timeout=timeout)
            stdout = ''
        else:
            proc = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                                  env=full_env, cwd=cwd, timeout=timeout)
            stdout = proc.stdout.decode('utf-8', errors='replace')
    except subprocess.TimeoutExpired:
        raise CommandError(f"{args[0]} did not finish within {timeout} seconds", args)
    except OSError as e:
        raise CommandError(f"Failed to run {args[0]}: {e}", args)

    stderr = proc.stderr.decode('utf-8', errors='replace') if proc.stderr else ''
    if stderr.strip():
        logger.debug(f"{args[0]} stderr: {stderr.strip()}")

    return CommandResult(args=args, returncode=proc.returncode, stdout=stdout, stderr=stderr)


def find_executable(name: str, extra_dirs: Iterable[str] = ()) -> Optional[str]:
    """Locate an executable on PATH, then in ``extra_dirs``."""
    path = shutil.which(name)
    if path:
        return path

    dirs = [d for d in extra_dirs if os.path.isdir(d)]
    if dirs:
        return shutil.which(name, path=os.pathsep.join(dirs))
    return None
