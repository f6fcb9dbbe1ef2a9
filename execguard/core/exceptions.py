# execguard/core/exceptions.py
from typing import Optional

from .guard_models import ViolationKind

class CoreError(Exception):
    """Base exception for all custom errors raised within the execguard core modules."""
    pass

class InterruptedError(CoreError):
    """
    Raised when a running command is intentionally stopped by the caller,
    for example by setting the stop event handed to the ExecutionGateway.
    """
    pass

class PolicyConfigError(CoreError):
    """Raised by the PolicyManager when the policy file cannot be parsed or validated."""
    pass

# Messages are kept in French: they are shown verbatim to the operator running the installer.
_SECURITY_MESSAGES = {
    ViolationKind.UnauthorizedCommand: "Commande non autorisée: {detail}",
    ViolationKind.PathTraversal: "Chemin non autorisé: path traversal détecté dans {detail}",
    ViolationKind.DisallowedSystemPath: "Chemin système non autorisé: {detail}",
    ViolationKind.DangerousCharacter: "Caractères dangereux détectés: {detail}",
}

class SecurityError(CoreError):
    """
    Raised by the ExecutionGateway when the CommandValidator refuses a command.

    The violation kind is kept on the exception so callers can branch on it
    instead of matching message substrings. No process is ever spawned for a
    command that produced this error.
    """
    def __init__(self, kind: ViolationKind, detail: str, command: Optional[str] = None):
        self.kind = kind
        self.detail = detail
        self.command = command
        super().__init__(_SECURITY_MESSAGES[kind].format(detail=detail))

class ExecutionTimeoutError(CoreError):
    """
    Raised when an approved command is still running after the gateway's timeout.
    The child process has already been terminated when this is raised.
    """
    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command execution timed out after {timeout} seconds: {command}")

class CommandExecutionError(RuntimeError):
    """
    Raised when an approved command could not be spawned at all (missing shell,
    OS error). A command that runs and exits non-zero is NOT an error; its exit
    code is returned to the caller.
    """
    def __init__(self, message: str, command: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.command = command
        self.exit_code = exit_code
