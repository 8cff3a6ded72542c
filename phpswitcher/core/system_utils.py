import os
import shlex
import subprocess
import logging
from typing import Dict, List, NamedTuple, Optional, Sequence

from . import config

logger = logging.getLogger(__name__)


class CommandSpawnError(RuntimeError):
    """Raised when an external command could not be started at all."""

    def __init__(self, command: Sequence[str], reason: str):
        self.command = list(command)
        self.reason = reason
        super().__init__(f"Could not start '{shlex.join(self.command)}': {reason}")


class CommandResult(NamedTuple):
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandGateway:
    """
    Runs external commands synchronously for the calling (worker) thread.

    Privileged commands are prefixed with the non-interactive escalation
    wrapper; the trust files checked at startup are what keep them from
    prompting. Non-zero exits are returned, never raised. No retries and no
    timeout: a hung command blocks the caller until it ends.
    """

    def __init__(self, paths: Optional[config.EnvironmentPaths] = None,
                 escalation_prefix: Sequence[str] = config.ESCALATION_PREFIX):
        self.paths = paths
        self.escalation_prefix = tuple(escalation_prefix)
        self._env: Optional[Dict[str, str]] = None
        if paths is not None:
            self._env = dict(os.environ)
            self._env["PATH"] = f"{paths.bin}{os.pathsep}{self._env.get('PATH', '')}"

    def build_command(self, command: Sequence[str], privileged: bool = False) -> List[str]:
        command_list = [str(part) for part in command]
        if privileged:
            return list(self.escalation_prefix) + command_list
        return command_list

    def run(self, command: Sequence[str], privileged: bool = False) -> CommandResult:
        command_list = self.build_command(command, privileged)
        joined_command = shlex.join(command_list)
        logger.debug(f"GATEWAY: Running command: {joined_command}")
        try:
            result = subprocess.run(
                command_list,
                capture_output=True,
                text=True,
                check=False,
                encoding='utf-8',
                errors='replace',
                env=self._env,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"GATEWAY: Command could not be started: {joined_command} ({e})")
            raise CommandSpawnError(command_list, str(e)) from e
        except OSError as e:
            logger.error(f"GATEWAY: OS error starting '{joined_command}': {e}", exc_info=True)
            raise CommandSpawnError(command_list, str(e)) from e

        if result.returncode != 0:
            logger.warning(
                f"GATEWAY: Command failed (Code: {result.returncode}): {joined_command}\n"
                f"  Stdout: {result.stdout.strip()}\n"
                f"  Stderr: {result.stderr.strip()}"
            )
        return CommandResult(result.returncode, result.stdout.strip(), result.stderr.strip())
