# execguard/core/policy_manager.py
import functools
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .exceptions import PolicyConfigError
from .guard_models import DEFAULT_FORBIDDEN_CHARACTERS, DEFAULT_FORBIDDEN_PATH_PREFIXES, CommandPolicy

logger = logging.getLogger(__name__)

PROCESS_EXECUTION = "process_execution"
SHELL_QUERY = "shell_query"
REQUIRED_POLICIES = (PROCESS_EXECUTION, SHELL_QUERY)
DEFAULT_TIMEOUT_SECONDS = 300.0

# Used when no policy file is present on disk.
_BUILTIN_CONFIG: Dict[str, Any] = {
    "default_timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
    "policies": {
        PROCESS_EXECUTION: {
            "allowed_binaries": ["composer", "which"],
            "supports_directory_change_prefix": True,
            "forbidden_characters": sorted(DEFAULT_FORBIDDEN_CHARACTERS | {"\n", "\r"}),
            "forbidden_path_prefixes": sorted(DEFAULT_FORBIDDEN_PATH_PREFIXES),
        },
        SHELL_QUERY: {
            "allowed_binaries": ["which"],
            "supports_directory_change_prefix": False,
            "forbidden_characters": sorted(DEFAULT_FORBIDDEN_CHARACTERS | {"\n", "\r"}),
            "forbidden_path_prefixes": sorted(DEFAULT_FORBIDDEN_PATH_PREFIXES),
        },
    },
}


class PolicyManager:
    """
    Loads the command policies and the execution timeout from a JSON file.

    The file holds one entry per named profile. Two profiles are required:
    `process_execution` (commands run with their output captured, optionally
    prefixed by `cd <dir> &&`) and `shell_query` (read-only lookups such as
    `which composer`). Policies are frozen once loaded.
    """
    def __init__(self, policies_path: Optional[str | Path] = None):
        """
        Args:
            policies_path: Optional path to the policy file. Defaults to
                           'command_policies.json' next to this module.

        Raises:
            PolicyConfigError: If the file exists but is malformed or incomplete.
        """
        if policies_path is None:
            self.policies_path = Path(__file__).resolve().parent / "command_policies.json"
        else:
            self.policies_path = Path(policies_path).resolve()

        config = self._load_policies_config()
        self.default_timeout = self._parse_timeout(config.get("default_timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
        self.policies: Dict[str, CommandPolicy] = self._build_policies(config.get("policies"))
        logger.info(f"PolicyManager initialized with policies {sorted(self.policies)} (timeout {self.default_timeout}s).")

    def _load_policies_config(self) -> Dict[str, Any]:
        if not self.policies_path.is_file():
            logger.warning(f"Policy file not found at '{self.policies_path}'. Using built-in policies.")
            return _BUILTIN_CONFIG
        try:
            with open(self.policies_path, "r", encoding="utf-8") as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise PolicyConfigError(f"Policy file '{self.policies_path}' is not valid JSON: {e}") from e
        except OSError as e:
            raise PolicyConfigError(f"Could not read policy file '{self.policies_path}': {e}") from e
        if not isinstance(config, dict):
            raise PolicyConfigError(f"Policy file '{self.policies_path}' must contain a JSON object.")
        logger.debug(f"Loaded policy file: {self.policies_path}")
        return config

    def _parse_timeout(self, value: Any) -> float:
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise PolicyConfigError(f"default_timeout_seconds must be a number, got {value!r}") from None
        if timeout <= 0:
            raise PolicyConfigError(f"default_timeout_seconds must be positive, got {timeout}")
        return timeout

    def _build_policies(self, raw_policies: Any) -> Dict[str, CommandPolicy]:
        if not isinstance(raw_policies, dict):
            raise PolicyConfigError(f"'policies' in '{self.policies_path}' must be an object keyed by profile name.")

        policies: Dict[str, CommandPolicy] = {}
        for name, fields in raw_policies.items():
            if not isinstance(fields, dict):
                raise PolicyConfigError(f"Policy '{name}' must be an object.")
            try:
                policies[name] = CommandPolicy(name=name, **fields)
            except (ValidationError, TypeError) as e:
                raise PolicyConfigError(f"Invalid policy '{name}': {e}") from e

        missing = [name for name in REQUIRED_POLICIES if name not in policies]
        if missing:
            raise PolicyConfigError(f"Policy file '{self.policies_path}' is missing required policies: {missing}")
        return policies

    def get_available_policies(self) -> List[str]:
        return sorted(self.policies)

    def get_policy(self, name: str) -> CommandPolicy:
        try:
            return self.policies[name]
        except KeyError:
            raise PolicyConfigError(f"Unknown policy '{name}'. Available: {self.get_available_policies()}") from None

    @property
    def process_execution_policy(self) -> CommandPolicy:
        return self.policies[PROCESS_EXECUTION]

    @property
    def shell_query_policy(self) -> CommandPolicy:
        return self.policies[SHELL_QUERY]


@functools.lru_cache(maxsize=None)
def get_default_policies() -> PolicyManager:
    """Returns the process-wide PolicyManager built from the shipped policy file."""
    return PolicyManager()
