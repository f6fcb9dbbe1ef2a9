# execguard/main.py
import argparse
import logging
import sys
from typing import List, Optional

from .core.command_validator import validate
from .core.exceptions import CommandExecutionError, ExecutionTimeoutError, PolicyConfigError, SecurityError
from .core.execution_gateway import ExecutionGateway
from .core.policy_manager import PolicyManager

# --- Logging Configuration ---
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s'

logger = logging.getLogger(__name__)

EXIT_REFUSED = 2
EXIT_NO_OUTPUT = 1
EXIT_TIMEOUT = 124


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="execguard", description="Validate and run guarded shell commands.")
    parser.add_argument("--policies", help="Path to a policy JSON file (defaults to the shipped policies).")
    parser.add_argument("--timeout", type=float, help="Seconds an approved command may run.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="action", required=True)

    check = subparsers.add_parser("check", help="Validate a command without running it.")
    check.add_argument("profile", help="Policy name, e.g. process_execution or shell_query.")
    check.add_argument("command", help="The command string to validate.")

    run = subparsers.add_parser("run", help="Validate and run a command with the process-execution policy.")
    run.add_argument("command")

    query = subparsers.add_parser("query", help="Validate and run a command with the shell-query policy.")
    query.add_argument("command")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT, stream=sys.stderr)

    try:
        manager = PolicyManager(args.policies)
    except PolicyConfigError as e:
        logger.error(str(e))
        return EXIT_REFUSED

    if args.action == "check":
        try:
            policy = manager.get_policy(args.profile)
        except PolicyConfigError as e:
            logger.error(str(e))
            return EXIT_REFUSED
        outcome = validate(args.command, policy)
        if outcome.approved:
            print(outcome.command.to_shell())
            return 0
        print(f"{outcome.kind.value}: {outcome.detail}")
        return EXIT_REFUSED

    try:
        gateway = ExecutionGateway(timeout=args.timeout, policy_manager=manager)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_REFUSED

    try:
        if args.action == "run":
            result = gateway.run(args.command)
            for line in result.stdout_lines:
                print(line)
            return result.exit_code
        output = gateway.query(args.command)
        if output is None:
            return EXIT_NO_OUTPUT
        print(output)
        return 0
    except SecurityError as e:
        print(str(e), file=sys.stderr)
        return EXIT_REFUSED
    except ExecutionTimeoutError as e:
        print(str(e), file=sys.stderr)
        return EXIT_TIMEOUT
    except CommandExecutionError as e:
        print(str(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
