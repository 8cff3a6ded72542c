import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from . import config
from .system_utils import CommandGateway, CommandSpawnError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvironmentCheckResult:
    check_id: str
    passed: bool
    diagnostic: str
    hint: str = ""


@dataclass(frozen=True)
class ValidationReport:
    passed: bool
    results: Tuple[EnvironmentCheckResult, ...]
    paths: Optional[config.EnvironmentPaths] = None

    @property
    def failure(self) -> Optional[EnvironmentCheckResult]:
        for result in self.results:
            if not result.passed:
                return result
        return None


@dataclass
class CheckContext:
    """Facts discovered by earlier checks that later checks build on."""
    base: Optional[Path] = None
    valet: Optional[Path] = None


@dataclass(frozen=True)
class EnvironmentCheck:
    check_id: str
    failure_message: str
    hint: str
    run: Callable[[CheckContext], Tuple[bool, str]] = field(compare=False)


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class EnvironmentValidator:
    """
    Runs the startup battery of environment checks, in order, stopping at
    the first failure. A passing run latches the package manager root into
    an ``EnvironmentPaths``.
    """

    def __init__(self, gateway: Optional[CommandGateway] = None,
                 roots: Sequence[Path] = config.HOMEBREW_ROOTS,
                 sudoers_dir: Path = config.SUDOERS_DIR,
                 extra_valet_candidates: Sequence[Path] = (config.COMPOSER_VALET_BINARY,)):
        self.gateway = gateway or CommandGateway()
        self.roots = tuple(Path(root) for root in roots)
        self.sudoers_dir = Path(sudoers_dir)
        self.extra_valet_candidates = tuple(Path(p) for p in extra_valet_candidates)

        self.checks: List[EnvironmentCheck] = [
            EnvironmentCheck(
                "brew_installed",
                "Homebrew could not be found.",
                f"Install Homebrew in one of: {', '.join(str(r) for r in self.roots)}.",
                self._check_brew,
            ),
            EnvironmentCheck(
                "php_binary",
                "No PHP binary is available through Homebrew.",
                "Install PHP with 'brew install php' and make sure it is linked.",
                self._check_php_binary,
            ),
            EnvironmentCheck(
                "php_formula",
                "PHP is installed but no versioned PHP formula was found.",
                "Run 'brew link php' or install a versioned formula such as 'php@8.1'.",
                self._check_php_formula,
            ),
            EnvironmentCheck(
                "valet_installed",
                "Laravel Valet could not be found.",
                "Install Valet with 'composer global require laravel/valet' and run 'valet install'.",
                self._check_valet,
            ),
            EnvironmentCheck(
                "brew_trusted",
                "Homebrew cannot be run as root without a password prompt.",
                "Run 'valet trust' to add the Homebrew sudoers entry.",
                self._trust_file_check(config.BREW_TRUST_FILE_NAME),
            ),
            EnvironmentCheck(
                "valet_trusted",
                "Valet cannot be run as root without a password prompt.",
                "Run 'valet trust' to add the Valet sudoers entry.",
                self._trust_file_check(config.VALET_TRUST_FILE_NAME),
            ),
            EnvironmentCheck(
                "single_php_service",
                "More than one PHP service is running.",
                "Stop the extra services with 'brew services stop php@X.Y' (with and without sudo).",
                self._check_single_php_service,
            ),
        ]

    def validate(self) -> ValidationReport:
        context = CheckContext()
        results: List[EnvironmentCheckResult] = []
        for check in self.checks:
            try:
                passed, detail = check.run(context)
            except CommandSpawnError as e:
                passed, detail = False, str(e)

            diagnostic = detail if passed else (f"{check.failure_message} {detail}".strip())
            result = EnvironmentCheckResult(check.check_id, passed, diagnostic, "" if passed else check.hint)
            results.append(result)
            if not passed:
                logger.warning(f"VALIDATOR: Check '{check.check_id}' failed: {diagnostic}")
                return ValidationReport(False, tuple(results))
            logger.debug(f"VALIDATOR: Check '{check.check_id}' passed. {detail}")

        paths = config.EnvironmentPaths(base=context.base, valet=context.valet)
        logger.info(f"VALIDATOR: Environment OK. Homebrew root: {paths.base}, Valet: {paths.valet}")
        return ValidationReport(True, tuple(results), paths)

    # --- Checks ---
    def _check_brew(self, context: CheckContext) -> Tuple[bool, str]:
        for root in self.roots:
            if _is_executable(root / "bin" / "brew"):
                context.base = root
                return True, f"Homebrew found at {root}."
        return False, ""

    def _check_php_binary(self, context: CheckContext) -> Tuple[bool, str]:
        php_binary = context.base / "bin" / "php"
        if php_binary.exists():
            return True, f"PHP binary at {php_binary}."
        return False, f"Expected {php_binary}."

    def _check_php_formula(self, context: CheckContext) -> Tuple[bool, str]:
        opt_dir = context.base / "opt"
        try:
            names = [item.name for item in opt_dir.iterdir()]
        except OSError as e:
            return False, f"Could not list {opt_dir}: {e}"
        if any(name.startswith(config.PHP_FORMULA_PREFIX) for name in names):
            return True, ""
        return False, f"Nothing matching '{config.PHP_FORMULA_PREFIX}*' in {opt_dir}."

    def _check_valet(self, context: CheckContext) -> Tuple[bool, str]:
        other_roots = [root for root in self.roots if root != context.base]
        candidates = [context.base / "bin" / "valet"]
        candidates += [root / "bin" / "valet" for root in other_roots]
        candidates += list(self.extra_valet_candidates)
        for candidate in candidates:
            if candidate.exists():
                context.valet = candidate
                return True, f"Valet found at {candidate}."
        return False, ""

    def _trust_file_check(self, name: str) -> Callable[[CheckContext], Tuple[bool, str]]:
        def check_trust_file(context: CheckContext) -> Tuple[bool, str]:
            trust_file = self.sudoers_dir / name
            if trust_file.exists():
                return True, ""
            return False, f"Missing {trust_file}."
        return check_trust_file

    def _check_single_php_service(self, context: CheckContext) -> Tuple[bool, str]:
        result = self.gateway.run([context.base / "bin" / "brew", "services", "list"])
        if not result.ok:
            return False, f"'brew services list' exited with {result.exit_code}."
        running = count_running_php_services(result.stdout)
        if running <= 1:
            return True, f"{running} PHP service(s) running."
        return False, f"{running} PHP services are running."


def count_running_php_services(services_output: str) -> int:
    """Counts `brew services list` rows for PHP formulae whose status is 'started'."""
    count = 0
    for line in services_output.splitlines():
        columns = line.split()
        if len(columns) < 2:
            continue
        name, status = columns[0], columns[1]
        if (name == config.PHP_FORMULA or name.startswith(config.PHP_FORMULA_PREFIX)) and status == "started":
            count += 1
    return count
