# execguard/core/command_validator.py
"""
Pure validation of raw command strings against a CommandPolicy.

`validate` never raises for string input and performs no I/O; it only
returns an `Approved` or `Rejected` outcome. The ExecutionGateway is the
only caller allowed to act on the outcome.
"""
import re
from typing import Iterable, Optional, Tuple

from .guard_models import (
    Approved,
    CommandPolicy,
    ParsedCommand,
    Rejected,
    ValidationOutcome,
    ViolationKind,
    normalize_posix_path,
)

# --- Regular Expressions ---
# The single structural pattern recognized: `cd <path> && <rest>`.
# <path> is a double-quoted literal, a single-quoted literal or a bare token.
# This is deliberately not a shell grammar; anything else falls through untouched.
CD_PREFIX_REGEX = re.compile(
    r"""^\s*cd\s+(?P<path>"[^"]*"|'[^']*'|[^\s'"]+)\s+(?P<join>&&)\s+(?P<rest>.+)$""",
    re.DOTALL,
)
# Splits a path into segments on either separator, so '..\\x' is caught too.
PATH_SEPARATOR_REGEX = re.compile(r"[\\/]")

QUOTE_CHARACTERS = "'\""
CONTEXT_RADIUS = 12 # Characters shown on each side of a dangerous character


def _strip_quotes(token: str) -> str:
    return token.strip(QUOTE_CHARACTERS)


def _unquote_literal(literal: str) -> str:
    """Removes the delimiting quotes matched by CD_PREFIX_REGEX, if any."""
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in QUOTE_CHARACTERS:
        return literal[1:-1]
    return literal


def split_directory_change(raw: str, policy: CommandPolicy) -> Tuple[ParsedCommand, Optional[Tuple[int, int]]]:
    """
    Splits off a recognized `cd <path> &&` prefix.

    Returns the parsed command and the (start, end) span of the consumed `&&`
    in `raw`, or None when no prefix was recognized.
    """
    if policy.supports_directory_change_prefix:
        match = CD_PREFIX_REGEX.match(raw)
        if match:
            parsed = ParsedCommand(
                directory_change=_unquote_literal(match.group("path")),
                remainder=match.group("rest").strip(),
            )
            return parsed, match.span("join")
    return ParsedCommand(directory_change=None, remainder=raw), None


def has_traversal_segment(path: str) -> bool:
    return ".." in PATH_SEPARATOR_REGEX.split(path)


def is_forbidden_system_path(path: str, prefixes: Iterable[str]) -> bool:
    """
    True when `path` equals a forbidden prefix or is nested beneath one.
    The root prefix only matches the root itself.
    """
    candidate = normalize_posix_path(path)
    for prefix in prefixes:
        if candidate == prefix:
            return True
        if prefix != "/" and candidate.startswith(prefix + "/"):
            return True
    return False


def find_dangerous_character(raw: str, forbidden: Iterable[str], exempt_span: Optional[Tuple[int, int]] = None) -> Optional[str]:
    """
    Returns a description of the first forbidden character in `raw`, skipping
    the characters inside `exempt_span`, or None when the string is clean.
    """
    forbidden_set = frozenset(forbidden)
    exempt_start, exempt_end = exempt_span if exempt_span else (-1, -1)
    for index, char in enumerate(raw):
        if exempt_start <= index < exempt_end:
            continue
        if char in forbidden_set:
            excerpt = raw[max(0, index - CONTEXT_RADIUS): index + CONTEXT_RADIUS + 1]
            return f"{char!r} (position {index}) dans {excerpt!r}"
    return None


def validate(raw: str, policy: CommandPolicy) -> ValidationOutcome:
    """
    Validates `raw` against `policy`.

    Checks run in a fixed order and the first failure wins:
    directory traversal, system path, dangerous characters, argument
    traversal, then the binary allowlist.

    Args:
        raw: The untrusted command string.
        policy: The profile to check against.

    Returns:
        Approved(ParsedCommand) or Rejected(ViolationKind, detail).
    """
    parsed, join_span = split_directory_change(raw, policy)

    # 1. The `cd` target, when one was split off.
    directory = parsed.directory_change
    if directory is not None:
        if has_traversal_segment(directory):
            return Rejected(kind=ViolationKind.PathTraversal, detail=directory)
        if is_forbidden_system_path(directory, policy.forbidden_path_prefixes):
            return Rejected(kind=ViolationKind.DisallowedSystemPath, detail=directory)

    # 2. Metacharacters anywhere in the original string, except the recognized join.
    dangerous = find_dangerous_character(raw, policy.forbidden_characters, join_span)
    if dangerous is not None:
        return Rejected(kind=ViolationKind.DangerousCharacter, detail=dangerous)

    tokens = parsed.remainder.split()

    # 3. Arguments of the command proper, e.g. `which ../etc/passwd`.
    for argument in tokens[1:]:
        if has_traversal_segment(_strip_quotes(argument)):
            return Rejected(kind=ViolationKind.PathTraversal, detail=argument)

    # 4. Binary allowlist (case-sensitive).
    binary = _strip_quotes(tokens[0]) if tokens else ""
    if binary not in policy.allowed_binaries:
        return Rejected(kind=ViolationKind.UnauthorizedCommand, detail=binary)

    return Approved(command=parsed)
