# execguard/core/execution_gateway.py
import logging
import subprocess
import threading
import time
from typing import IO, List, Optional

from .command_validator import validate
from .exceptions import CommandExecutionError, ExecutionTimeoutError, InterruptedError, SecurityError
from .guard_models import CommandOutput, CommandPolicy, ParsedCommand
from .policy_manager import PolicyManager, get_default_policies

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05 # seconds between liveness checks of the child
TERMINATE_GRACE_PERIOD = 5.0 # seconds allowed after SIGTERM before SIGKILL
READER_JOIN_TIMEOUT = 5.0 # seconds to drain the output pipe once the child exited


def _read_stream(stream: Optional[IO[str]], output_lines: List[str]) -> None:
    """Collects every line of `stream`; runs on its own thread so a full pipe cannot block the child."""
    try:
        if stream:
            for line in iter(stream.readline, ''):
                line = line.rstrip("\r\n")
                logger.debug(f"[CMD OUT] {line}")
                output_lines.append(line)
            stream.close()
    except (OSError, ValueError) as e_thread:
        logger.error(f"Error reading command output: {e_thread}")


class ExecutionGateway:
    """
    The only component allowed to hand a command to the operating system.

    Every call validates first. A refused command raises SecurityError and no
    process is spawned; an approved one is spawned exactly once, with exactly
    the normalized form produced by the validator.

    Features:
    - `run`: process-execution profile; output lines (stderr merged) and exit code.
    - `query`: shell-query profile; trimmed stdout or None.
    - Bounded wait: the child is terminated and ExecutionTimeoutError raised on expiry.
    - Optional stop event to cancel a running command from another thread.
    """
    def __init__(
        self,
        process_policy: Optional[CommandPolicy] = None,
        query_policy: Optional[CommandPolicy] = None,
        timeout: Optional[float] = None,
        stop_event: Optional[threading.Event] = None,
        policy_manager: Optional[PolicyManager] = None,
    ):
        """
        Args:
            process_policy: Policy used by `run`. Defaults to the shipped 'process_execution' policy.
            query_policy: Policy used by `query`. Defaults to the shipped 'shell_query' policy.
            timeout: Seconds an approved command may run. Defaults to the configured timeout.
            stop_event: When set while `run` is waiting, the child is terminated.
            policy_manager: Source of the defaults above. Defaults to the process-wide manager.

        Raises:
            ValueError: If the timeout is not positive.
        """
        if process_policy is None or query_policy is None or timeout is None:
            policy_manager = policy_manager or get_default_policies()
        self.process_policy = process_policy or policy_manager.process_execution_policy
        self.query_policy = query_policy or policy_manager.shell_query_policy
        self.timeout = float(timeout if timeout is not None else policy_manager.default_timeout)
        if self.timeout <= 0:
            raise ValueError(f"ExecutionGateway timeout must be positive, got {self.timeout}.")
        self.stop_event = stop_event

    def check(self, raw: str, policy: CommandPolicy) -> ParsedCommand:
        """
        Validates `raw` against `policy` and returns the normalized command.

        Raises:
            SecurityError: If the validator rejected the command.
        """
        outcome = validate(raw, policy)
        if not outcome.approved:
            logger.warning(f"Command blocked by policy '{policy.name}' ({outcome.kind.value}: {outcome.detail}). Command: '{raw}'")
            raise SecurityError(outcome.kind, outcome.detail, command=raw)
        return outcome.command

    def run(self, raw: str) -> CommandOutput:
        """
        Validates `raw` with the process-execution policy and runs it through the shell.

        A non-zero exit code is returned, not raised; the caller decides what it means.

        Raises:
            SecurityError: The command was refused; nothing was spawned.
            ExecutionTimeoutError: The command outlived the timeout and was terminated.
            InterruptedError: The stop event was set while the command ran.
            CommandExecutionError: The shell itself could not be started.
        """
        shell_command = self.check(raw, self.process_policy).to_shell()
        logger.info(f"Executing command: {shell_command}")

        process = None
        stdout_lines: List[str] = []
        try:
            process = subprocess.Popen(
                shell_command, shell=True,
                stdout=subprocess.PIPE, stderr=subprocess.STDOUT, stdin=subprocess.DEVNULL,
                text=True, encoding='utf-8', errors='replace', bufsize=1,
            )
            reader = threading.Thread(target=_read_stream, args=(process.stdout, stdout_lines), daemon=True)
            reader.start()

            deadline = time.monotonic() + self.timeout
            while process.poll() is None:
                if self.stop_event and self.stop_event.is_set():
                    logger.warning(f"Stop event received. Terminating process {process.pid} for command: '{shell_command}'")
                    self._terminate(process)
                    raise InterruptedError(f"Command execution stopped by user: {shell_command}")
                if time.monotonic() >= deadline:
                    logger.error(f"Command '{shell_command}' exceeded {self.timeout}s. Terminating process {process.pid}.")
                    self._terminate(process)
                    raise ExecutionTimeoutError(shell_command, self.timeout)
                time.sleep(POLL_INTERVAL)

            reader.join(timeout=READER_JOIN_TIMEOUT)
            if reader.is_alive():
                logger.warning(f"Output of '{shell_command}' still open after exit; returning what was read.")

            exit_code = process.returncode
            if exit_code != 0:
                logger.error(f"Command '{shell_command}' failed with exit code {exit_code}.")
            else:
                logger.info(f"Command '{shell_command}' finished successfully.")
            return CommandOutput(command=shell_command, stdout_lines=list(stdout_lines), exit_code=exit_code)

        except OSError as e:
            err_msg = f"Could not start shell for command '{shell_command}': {e}"
            logger.error(err_msg)
            raise CommandExecutionError(err_msg, command=shell_command) from e
        finally:
            if process and process.poll() is None:
                logger.warning(f"Command '{shell_command}' process did not terminate cleanly. Attempting to kill.")
                process.kill()
                try:
                    process.wait(timeout=2)
                except subprocess.TimeoutExpired:
                    logger.error(f"Process {process.pid} for command '{shell_command}' did not exit after kill.")

    def query(self, raw: str) -> Optional[str]:
        """
        Validates `raw` with the shell-query policy and returns its trimmed stdout.

        Stderr is discarded. Returns None when the command printed nothing,
        e.g. `which` for a binary that is not on PATH.

        Raises:
            SecurityError: The command was refused; nothing was spawned.
            ExecutionTimeoutError: The command outlived the timeout.
            CommandExecutionError: The shell itself could not be started.
        """
        shell_command = self.check(raw, self.query_policy).to_shell()
        logger.debug(f"Running shell query: {shell_command}")
        try:
            completed = subprocess.run(
                shell_command, shell=True,
                stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, stdin=subprocess.DEVNULL,
                text=True, encoding='utf-8', errors='replace', timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Shell query '{shell_command}' exceeded {self.timeout}s.")
            raise ExecutionTimeoutError(shell_command, self.timeout) from None
        except OSError as e:
            err_msg = f"Could not start shell for query '{shell_command}': {e}"
            logger.error(err_msg)
            raise CommandExecutionError(err_msg, command=shell_command) from e

        output = (completed.stdout or "").strip()
        return output or None

    def _terminate(self, process: subprocess.Popen) -> None:
        process.terminate()
        try:
            process.wait(timeout=TERMINATE_GRACE_PERIOD)
            logger.info(f"Process {process.pid} terminated gracefully.")
        except subprocess.TimeoutExpired:
            logger.warning(f"Process {process.pid} did not terminate gracefully. Killing.")
            process.kill()
            process.wait()
