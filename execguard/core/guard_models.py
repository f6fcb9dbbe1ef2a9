# execguard/core/guard_models.py
import re
import shlex
from enum import Enum
from typing import FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_FORBIDDEN_CHARACTERS: FrozenSet[str] = frozenset({";", "&", "|", "`", "$", "<", ">"})
DEFAULT_FORBIDDEN_PATH_PREFIXES: FrozenSet[str] = frozenset({"/etc", "/bin", "/usr", "/root", "/boot", "/"})


def normalize_posix_path(path: str) -> str:
    """Collapses repeated slashes and drops a trailing slash, keeping a bare '/' intact."""
    collapsed = re.sub(r"/+", "/", path)
    if len(collapsed) > 1:
        collapsed = collapsed.rstrip("/")
    return collapsed


# --- Violation Kinds ---
class ViolationKind(str, Enum):
    """
    Categories of refusal, listed in the order the validator checks them.
    """
    PathTraversal = "PathTraversal"
    DisallowedSystemPath = "DisallowedSystemPath"
    DangerousCharacter = "DangerousCharacter"
    UnauthorizedCommand = "UnauthorizedCommand"


class CommandPolicy(BaseModel):
    """
    An immutable allowlist/denylist profile a command is validated against.

    Instances are built once (see PolicyManager) and shared read-only between
    the validator and the gateway.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    allowed_binaries: FrozenSet[str]
    supports_directory_change_prefix: bool = False
    forbidden_characters: FrozenSet[str] = Field(default=DEFAULT_FORBIDDEN_CHARACTERS)
    forbidden_path_prefixes: FrozenSet[str] = Field(default=DEFAULT_FORBIDDEN_PATH_PREFIXES)

    @field_validator("forbidden_characters")
    @classmethod
    def _single_characters(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        for char in value:
            if len(char) != 1:
                raise ValueError(f"Forbidden characters must be single characters, got {char!r}")
            if char in ("'", '"'):
                raise ValueError("Quote characters cannot be forbidden; they delimit paths and binaries.")
        return value

    @field_validator("forbidden_path_prefixes")
    @classmethod
    def _absolute_prefixes(cls, value: FrozenSet[str]) -> FrozenSet[str]:
        normalized = set()
        for prefix in value:
            if not prefix.startswith("/"):
                raise ValueError(f"Forbidden path prefixes must be absolute, got {prefix!r}")
            normalized.add(normalize_posix_path(prefix))
        return frozenset(normalized)


class ParsedCommand(BaseModel):
    """The structural split of a raw command: an optional `cd` target and the command proper."""
    model_config = ConfigDict(frozen=True)

    directory_change: Optional[str] = None
    remainder: str

    def to_shell(self) -> str:
        """Renders the exact string handed to the shell."""
        if self.directory_change is None:
            return self.remainder
        return f"cd {shlex.quote(self.directory_change)} && {self.remainder}"


class Approved(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["approved"] = "approved"
    command: ParsedCommand

    @property
    def approved(self) -> bool:
        return True


class Rejected(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["rejected"] = "rejected"
    kind: ViolationKind
    detail: str

    @property
    def approved(self) -> bool:
        return False


ValidationOutcome = Union[Approved, Rejected]


class CommandOutput(BaseModel):
    """Output of an approved command run through the ExecutionGateway."""
    command: str # The exact string given to the shell
    stdout_lines: List[str] = Field(default_factory=list) # stdout with stderr merged in
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def stdout(self) -> str:
        return "\n".join(self.stdout_lines)
