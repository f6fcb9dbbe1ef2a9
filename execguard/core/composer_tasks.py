# execguard/core/composer_tasks.py
import logging
import os
import shlex
from pathlib import Path
from typing import List, Optional

from .exceptions import CommandExecutionError, ExecutionTimeoutError, SecurityError
from .execution_gateway import ExecutionGateway

logger = logging.getLogger(__name__)

COMPOSER_CANDIDATES = ("composer", "composer.phar")


class ComposerTasks:
    """
    Composer operations performed by the project installer, all routed through
    the ExecutionGateway.

    Every argument is quoted with `shlex.quote` before the command string is
    built. When a step cannot run (composer missing, command refused, non-zero
    exit) the method logs the command the operator should run by hand and
    returns False; it never retries through another execution path.
    """
    def __init__(self, gateway: Optional[ExecutionGateway] = None):
        self.gateway = gateway or ExecutionGateway()

    def is_executable(self, path: str) -> bool:
        """Bare names are looked up on PATH with a guarded `which`; paths are checked on disk."""
        if os.sep not in path:
            try:
                resolved = self.gateway.query(f"which {shlex.quote(path)}")
            except SecurityError as e:
                logger.warning(f"Refused to look up '{path}': {e}")
                return False
            except (ExecutionTimeoutError, CommandExecutionError) as e:
                logger.error(f"Lookup of '{path}' failed: {e}")
                return False
            return bool(resolved) and os.access(resolved, os.X_OK)
        candidate = Path(path)
        return candidate.is_file() and os.access(candidate, os.X_OK)

    def find_composer(self) -> Optional[str]:
        """Returns the first composer binary the process policy allows and PATH provides."""
        for name in COMPOSER_CANDIDATES:
            if name not in self.gateway.process_policy.allowed_binaries:
                logger.debug(f"Skipping '{name}': not allowed by policy '{self.gateway.process_policy.name}'.")
                continue
            if self.is_executable(name):
                logger.debug(f"Found composer: {name}")
                return name
        logger.warning("Composer is not available in PATH.")
        return None

    def install_package(self, package: str, base_dir: str | Path) -> bool:
        """Runs `composer require <package>` inside `base_dir`."""
        manual = f"cd {shlex.quote(str(base_dir))} && composer require {shlex.quote(package)}"
        logger.info(f"Installing {package}...")
        if not Path(base_dir).is_dir():
            logger.error(f"Directory does not exist: {base_dir}. Install manually: {manual}")
            return False
        return self._run_composer(base_dir, ["require", package, "--no-interaction"], manual)

    def install_package_in_docker(self, package: str, www_dir: str | Path) -> bool:
        """
        Runs `composer require <package>` inside the Docker layout's `www/` directory.

        When it cannot run, the operator is pointed at both the host command and
        the `ccomposer` alias available once the containers are up.
        """
        quoted = shlex.quote(package)
        manual = f"cd www && composer require {quoted} (or after starting Docker: ccomposer require {quoted})"
        logger.info(f"Installing {package} into www/...")
        if not Path(www_dir).is_dir():
            logger.error(f"The www/ directory does not exist: {www_dir}.")
            return False
        return self._run_composer(www_dir, ["require", package, "--no-interaction"], manual)

    def regenerate_autoloader(self, target_dir: str | Path) -> bool:
        """Runs `composer dump-autoload` inside `target_dir`."""
        manual = f"cd {shlex.quote(str(target_dir))} && composer dump-autoload"
        logger.info("Regenerating autoloader...")
        return self._run_composer(target_dir, ["dump-autoload", "--no-interaction"], manual)

    def _run_composer(self, directory: str | Path, args: List[str], manual: str) -> bool:
        composer = self.find_composer()
        if not composer:
            logger.error(f"Composer is not available. Run manually: {manual}")
            return False

        quoted_args = " ".join(shlex.quote(arg) for arg in args)
        command = f"cd {shlex.quote(str(directory))} && {shlex.quote(composer)} {quoted_args}"
        try:
            result = self.gateway.run(command)
        except SecurityError as e:
            logger.error(f"Composer command refused ({e.kind.value}): {e}. Run manually: {manual}")
            return False
        except (ExecutionTimeoutError, CommandExecutionError) as e:
            logger.error(f"Composer command did not complete: {e}. Run manually: {manual}")
            return False

        if not result.success:
            logger.error(f"Composer exited with code {result.exit_code}. Output:\n{result.stdout}\nRun manually: {manual}")
            return False
        logger.info(f"Composer command succeeded: {command}")
        return True
