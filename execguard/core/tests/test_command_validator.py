# execguard/core/tests/test_command_validator.py
import pytest

from execguard.core.command_validator import (
    find_dangerous_character,
    is_forbidden_system_path,
    split_directory_change,
    validate,
)
from execguard.core.guard_models import Approved, CommandPolicy, ParsedCommand, Rejected, ViolationKind
from execguard.core.policy_manager import PolicyManager

# --- Fixtures ---

@pytest.fixture(scope="module")
def policy_manager() -> PolicyManager:
    return PolicyManager()

@pytest.fixture
def process_policy(policy_manager: PolicyManager) -> CommandPolicy:
    return policy_manager.process_execution_policy

@pytest.fixture
def query_policy(policy_manager: PolicyManager) -> CommandPolicy:
    return policy_manager.shell_query_policy

# --- Test Cases ---

class TestKnownScenarios:
    """The reference scenarios for both shipped policies."""

    def test_unlisted_binary_is_unauthorized(self, process_policy):
        outcome = validate("rm -rf /", process_policy)
        assert outcome == Rejected(kind=ViolationKind.UnauthorizedCommand, detail="rm")

    def test_semicolon_after_allowed_binary_is_dangerous(self, process_policy):
        outcome = validate("composer require test; rm -rf /", process_policy)
        assert isinstance(outcome, Rejected)
        assert outcome.kind == ViolationKind.DangerousCharacter
        assert "';'" in outcome.detail

    def test_traversal_in_cd_target(self, process_policy):
        outcome = validate("cd /tmp/../etc && composer --version", process_policy)
        assert outcome.kind == ViolationKind.PathTraversal
        assert outcome.detail == "/tmp/../etc"

    def test_cd_into_system_path(self, process_policy):
        outcome = validate("cd /etc/passwd && composer --version", process_policy)
        assert outcome == Rejected(kind=ViolationKind.DisallowedSystemPath, detail="/etc/passwd")

    def test_which_is_allowed_for_queries(self, query_policy):
        outcome = validate("which composer", query_policy)
        assert outcome == Approved(command=ParsedCommand(directory_change=None, remainder="which composer"))
        assert outcome.approved

    def test_ls_is_not_allowed_for_queries(self, query_policy):
        outcome = validate("ls -la", query_policy)
        assert outcome == Rejected(kind=ViolationKind.UnauthorizedCommand, detail="ls")
        assert not outcome.approved


class TestDirectoryChangePrefix:
    """Tests the `cd <path> && <rest>` split."""

    @pytest.mark.parametrize("command", [
        'cd "/tmp" && composer --version',
        "cd '/tmp' && composer --version",
        "cd /tmp && composer --version",
        "  cd   /tmp   &&   composer --version  ",
    ])
    def test_quoting_forms_parse_identically(self, process_policy, command):
        outcome = validate(command, process_policy)
        assert outcome == Approved(command=ParsedCommand(directory_change="/tmp", remainder="composer --version"))

    def test_quoted_path_with_spaces(self, process_policy):
        outcome = validate("cd '/tmp/my project' && composer install", process_policy)
        assert outcome.approved
        assert outcome.command.directory_change == "/tmp/my project"
        assert outcome.command.to_shell() == "cd '/tmp/my project' && composer install"

    def test_which_after_cd_is_allowed(self, process_policy):
        outcome = validate("cd /tmp && which composer", process_policy)
        assert outcome.approved
        assert outcome.command.remainder == "which composer"

    def test_relative_directory_is_allowed(self, process_policy):
        outcome = validate("cd www && composer dump-autoload --no-interaction", process_policy)
        assert outcome.approved
        assert outcome.command.to_shell() == "cd www && composer dump-autoload --no-interaction"

    def test_no_prefix_leaves_remainder_whole(self, process_policy):
        parsed, join_span = split_directory_change("composer --version", process_policy)
        assert parsed == ParsedCommand(directory_change=None, remainder="composer --version")
        assert join_span is None

    def test_no_prefix_keeps_input_verbatim(self, query_policy):
        outcome = validate("  which composer ", query_policy)
        assert outcome.approved
        assert outcome.command.remainder == "  which composer "

    def test_join_span_points_at_ampersands(self, process_policy):
        raw = "cd /tmp && composer --version"
        _, join_span = split_directory_change(raw, process_policy)
        assert raw[join_span[0]:join_span[1]] == "&&"

    def test_query_policy_does_not_recognize_prefix(self, query_policy):
        """Without prefix support the join is an ordinary '&' and is refused."""
        outcome = validate("cd /tmp && which composer", query_policy)
        assert outcome.kind == ViolationKind.DangerousCharacter

    def test_join_without_spaces_is_not_the_prefix(self, process_policy):
        outcome = validate("cd /tmp&&composer --version", process_policy)
        assert outcome.kind == ViolationKind.DangerousCharacter


class TestPathChecks:
    """Traversal and system-path checks on the `cd` target and on arguments."""

    def test_traversal_reported_before_system_path(self, process_policy):
        outcome = validate("cd /etc/../etc && composer --version", process_policy)
        assert outcome.kind == ViolationKind.PathTraversal

    @pytest.mark.parametrize("path", ["..", "../www", "www/..", "a/../../b", "..\\windows"])
    def test_traversal_segments(self, process_policy, path):
        outcome = validate(f"cd '{path}' && composer install", process_policy)
        assert outcome.kind == ViolationKind.PathTraversal

    def test_dots_inside_a_name_are_not_traversal(self, process_policy):
        outcome = validate("cd /tmp/app..old && composer install", process_policy)
        assert outcome.approved

    @pytest.mark.parametrize("path", ["/etc", "/etc/", "//etc", "/bin/x", "/usr/local/lib", "/root", "/boot/grub", "/"])
    def test_system_paths_are_refused(self, process_policy, path):
        outcome = validate(f"cd {path} && composer --version", process_policy)
        assert outcome == Rejected(kind=ViolationKind.DisallowedSystemPath, detail=path)

    @pytest.mark.parametrize("path", ["/tmp", "/home/dev/site", "/var/www/html", "/etcetera", "/usrdata"])
    def test_other_paths_are_allowed(self, process_policy, path):
        outcome = validate(f"cd {path} && composer --version", process_policy)
        assert outcome.approved

    def test_root_prefix_matches_only_root(self):
        assert is_forbidden_system_path("/", {"/"})
        assert not is_forbidden_system_path("/tmp", {"/"})
        assert is_forbidden_system_path("/etc/ssl/", {"/etc"})

    def test_traversal_in_query_argument(self, query_policy):
        outcome = validate("which ../etc/passwd", query_policy)
        assert outcome == Rejected(kind=ViolationKind.PathTraversal, detail="../etc/passwd")

    def test_traversal_in_quoted_argument(self, process_policy):
        outcome = validate("composer require '../vendor/pkg'", process_policy)
        assert outcome.kind == ViolationKind.PathTraversal


class TestDangerousCharacters:
    """The metacharacter scan over the whole raw string."""

    @pytest.mark.parametrize("command", [
        "composer require test; rm -rf /",
        "composer require test & rm -rf /",
        "composer require test | cat",
        "composer require `rm -rf /`",
        "composer require $PATH",
        "composer require test > /tmp/out",
        "composer require test < /tmp/in",
        "which composer; rm -rf /",
    ])
    def test_metacharacters_are_refused(self, process_policy, command):
        assert validate(command, process_policy).kind == ViolationKind.DangerousCharacter

    @pytest.mark.parametrize("command", [
        "cd /tmp && composer install && rm -rf /",
        "cd /tmp && composer install & whoami",
        "cd /tmp && composer install || true",
        "cd /tmp && composer require $(whoami)",
    ])
    def test_only_the_recognized_join_is_exempt(self, process_policy, command):
        assert validate(command, process_policy).kind == ViolationKind.DangerousCharacter

    @pytest.mark.parametrize("command", [
        "composer require ../pkg; rm -rf /",
        "which ../x | sh",
        "cd /tmp && composer require ../a && rm -rf ~",
    ])
    def test_metacharacter_reported_before_argument_traversal(self, process_policy, command):
        assert validate(command, process_policy).kind == ViolationKind.DangerousCharacter

    def test_variable_inside_quoted_cd_path(self, process_policy):
        outcome = validate('cd "$HOME" && composer install', process_policy)
        assert outcome.kind == ViolationKind.DangerousCharacter

    def test_newline_is_a_separator(self, process_policy):
        outcome = validate("composer --version\nrm -rf /tmp/x", process_policy)
        assert outcome.kind == ViolationKind.DangerousCharacter

    def test_dangerous_character_beats_unauthorized_binary(self, process_policy):
        outcome = validate("rm -rf / ; echo", process_policy)
        assert outcome.kind == ViolationKind.DangerousCharacter

    def test_quotes_are_not_dangerous(self, process_policy):
        outcome = validate("composer require \"vendor/package\" 'other/package'", process_policy)
        assert outcome.approved

    def test_detail_names_character_and_context(self):
        detail = find_dangerous_character("composer require test | cat", {"|"})
        assert detail.startswith("'|' (position 22)")
        assert "test | cat" in detail

    def test_exempt_span_is_skipped(self):
        assert find_dangerous_character("a && b", {"&"}, (2, 4)) is None
        assert find_dangerous_character("a && b &", {"&"}, (2, 4)) is not None


class TestBinaryAllowlist:
    """Tests the leading-token allowlist."""

    def test_quoted_binary_is_unquoted(self, process_policy):
        assert validate("'composer' require vendor/package", process_policy).approved
        assert validate('"which" composer', process_policy).approved

    def test_match_is_case_sensitive(self, process_policy):
        outcome = validate("Composer --version", process_policy)
        assert outcome == Rejected(kind=ViolationKind.UnauthorizedCommand, detail="Composer")

    def test_path_to_binary_is_not_the_binary(self, process_policy):
        outcome = validate("/usr/bin/composer --version", process_policy)
        assert outcome == Rejected(kind=ViolationKind.UnauthorizedCommand, detail="/usr/bin/composer")

    def test_unauthorized_after_cd(self, process_policy):
        outcome = validate("cd /tmp && rm -rf www", process_policy)
        assert outcome == Rejected(kind=ViolationKind.UnauthorizedCommand, detail="rm")

    def test_composer_not_allowed_for_queries(self, query_policy):
        outcome = validate("composer --version", query_policy)
        assert outcome.kind == ViolationKind.UnauthorizedCommand

    @pytest.mark.parametrize("command", ["", "   ", "''"])
    def test_empty_command_is_unauthorized(self, process_policy, command):
        outcome = validate(command, process_policy)
        assert outcome == Rejected(kind=ViolationKind.UnauthorizedCommand, detail="")


class TestPurity:
    """validate is total and deterministic."""

    @pytest.mark.parametrize("command", ["cd", "cd &&", "cd '' && composer", "cd \"unterminated && composer", "\x00", "&&&&", "'"])
    def test_never_raises(self, process_policy, query_policy, command):
        for policy in (process_policy, query_policy):
            assert validate(command, policy).status in ("approved", "rejected")

    def test_same_input_same_outcome(self, process_policy):
        command = "cd /tmp && composer require test; id"
        assert validate(command, process_policy) == validate(command, process_policy)
