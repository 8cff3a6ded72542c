import sys
import argparse
import logging
from typing import List, Optional

from phpswitcher.core import config
from phpswitcher.core.environment import EnvironmentValidator, ValidationReport
from phpswitcher.core.orchestrator import OrchestrationResult, SwitchOrchestrator
from phpswitcher.core.system_utils import CommandGateway
from phpswitcher.managers.php_manager import PhpInstallation, PhpRegistry

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter('%(asctime)s [%(levelname)-7s] %(name)s: %(message)s', datefmt='%H:%M:%S'))
    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _describe(installation: PhpInstallation) -> str:
    if not installation.valid:
        return f"unknown ({installation.error})"
    return f"PHP {installation.full_version} ({installation.formula})"


def _print_result(result: OrchestrationResult) -> int:
    if not result.accepted:
        print(f"Rejected: {result.error}", file=sys.stderr)
        return 1
    if result.aborted:
        print(f"Aborted: {result.error}", file=sys.stderr)
        return 1
    for step in result.failed_steps:
        print(f"Step failed (continued): {step}", file=sys.stderr)
    if result.installation is not None:
        print(f"Active: {_describe(result.installation)}")
    return 0 if result.success else 1


def validate_or_exit(validator: Optional[EnvironmentValidator] = None) -> ValidationReport:
    report = (validator or EnvironmentValidator()).validate()
    if not report.passed:
        failure = report.failure
        print(f"Environment check '{failure.check_id}' failed: {failure.diagnostic}", file=sys.stderr)
        if failure.hint:
            print(f"Hint: {failure.hint}", file=sys.stderr)
        sys.exit(1)
    return report


def build_orchestrator(paths: config.EnvironmentPaths) -> SwitchOrchestrator:
    gateway = CommandGateway(paths)
    return SwitchOrchestrator(paths, gateway, PhpRegistry(paths, gateway))


def run(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="phpswitcher", description="Check, inspect and switch the Homebrew PHP version.")
    parser.add_argument('-v', '--verbose', action='store_true', help='Log debug output to stderr.')
    subparsers = parser.add_subparsers(dest='command')
    subparsers.add_parser('check', help='Run the environment checks.')
    subparsers.add_parser('list', help='List installed PHP versions.')
    subparsers.add_parser('current', help='Show the active PHP installation.')
    use_parser = subparsers.add_parser('use', help='Switch to another PHP version.')
    use_parser.add_argument('version', help='Version to switch to, e.g. 8.1')
    subparsers.add_parser('fix', help='Stop all PHP services and relink the default PHP.')
    restart_parser = subparsers.add_parser('restart', help='Restart services (as root).')
    restart_parser.add_argument('service', choices=sorted(config.SERVICES) + ['all'])
    subparsers.add_parser('phpinfo', help='Write a phpinfo() report and print its path.')

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    logger.debug(f"CLI: Running '{args.command}'")
    report = validate_or_exit()
    if args.command == 'check':
        for result in report.results:
            print(f"[ok] {result.check_id}: {result.diagnostic}")
        return 0

    orchestrator = build_orchestrator(report.paths)

    if args.command == 'list':
        versions = orchestrator.registry.discover_versions()
        active = orchestrator.periodic_refresh()
        for version in versions:
            marker = "*" if active.valid and active.version == version else " "
            alias = " (php)" if version == versions.alias else ""
            print(f"{marker} {version}{alias}")
        return 0

    if args.command == 'current':
        orchestrator.registry.resolve_alias_version()
        installation = orchestrator.periodic_refresh()
        print(_describe(installation))
        if installation.valid:
            print(f"  memory_limit: {installation.memory_limit}")
            print(f"  upload_max_filesize: {installation.upload_max_filesize}")
            print(f"  post_max_size: {installation.post_max_size}")
            print(f"  extensions: {', '.join(sorted(installation.active_extensions)) or '-'}")
        return 0 if installation.valid else 1

    if args.command == 'use':
        versions = orchestrator.registry.discover_versions()
        if args.version not in versions:
            print(f"PHP {args.version} is not installed. Installed: {', '.join(versions)}", file=sys.stderr)
            return 1
        result = orchestrator.switch_to(args.version)
        code = _print_result(result)
        if result.installation is not None and result.installation.version != args.version:
            print(f"Warning: requested PHP {args.version} but PHP {result.installation.version or '?'} is active.",
                  file=sys.stderr)
            code = 1
        return code

    if args.command == 'fix':
        return _print_result(orchestrator.force_recover())

    if args.command == 'restart':
        return _print_result(orchestrator.restart(args.service))

    if args.command == 'phpinfo':
        ok, detail = orchestrator.php_info()
        print(detail, file=sys.stdout if ok else sys.stderr)
        return 0 if ok else 1

    parser.print_help()
    return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
