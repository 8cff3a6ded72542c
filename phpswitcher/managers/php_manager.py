# phpswitcher/managers/php_manager.py

import os
import re
import json
import shutil
import tempfile
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from ..core import config
from ..core.system_utils import CommandGateway, CommandSpawnError

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(r'^\s*(\d+)\.(\d+)(?:\.(\d+))?')
EXTENSION_LINE_RE = re.compile(
    r'^\s*(?P<comment>;)?\s*(?P<kind>zend_extension|extension)\s*=\s*"?(?P<value>[^"\s;]+)"?',
    re.IGNORECASE
)
LIMITS_SNIPPET = (
    "echo ini_get('memory_limit') . '|' . ini_get('upload_max_filesize')"
    " . '|' . ini_get('post_max_size');"
)


def parse_php_version(output: str) -> Optional[Tuple[str, str]]:
    """Returns (full_version, short_version) from e.g. '8.1.12', or None."""
    if not output:
        return None
    match = VERSION_RE.match(output)
    if not match:
        return None
    major, minor, patch = match.groups()
    short = f"{major}.{minor}"
    full = f"{short}.{patch}" if patch is not None else short
    return full, short


def version_sort_key(version: str) -> Tuple[int, ...]:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError:
        return (0,)


def _extension_name(value: str) -> str:
    name = Path(value).name
    if name.endswith(".so"):
        name = name[:-3]
    if name.startswith("php_"):
        name = name[4:]
    return name.lower()


@dataclass(frozen=True)
class PhpExtension:
    name: str
    kind: str  # "extension" or "zend_extension"
    file: Path
    enabled: bool


def load_extensions(ini_file: Path) -> List[PhpExtension]:
    """Parses extension directives (commented or not) declared in one ini file."""
    extensions: List[PhpExtension] = []
    try:
        content = ini_file.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        logger.warning(f"PHP_MANAGER: Could not read {ini_file} for extensions: {e}")
        return extensions

    for line in content.splitlines():
        match = EXTENSION_LINE_RE.match(line)
        if not match:
            continue
        extensions.append(PhpExtension(
            name=_extension_name(match.group('value')),
            kind=match.group('kind').lower(),
            file=ini_file,
            enabled=match.group('comment') is None,
        ))
    return extensions


@dataclass(frozen=True)
class PhpInstallation:
    """
    Snapshot of the active PHP installation.

    Produced fresh by every resolution and never mutated. When detection
    fails the installation is still returned, with ``valid`` False and an
    ``error`` marker, so callers always have something to render.
    """
    version: str
    full_version: str
    formula: str
    binary_path: Path
    extensions: Tuple[PhpExtension, ...] = ()
    memory_limit: str = ""
    upload_max_filesize: str = ""
    post_max_size: str = ""
    ini_path: Optional[Path] = None
    conf_d_path: Optional[Path] = None
    valid: bool = True
    error: Optional[str] = None

    @classmethod
    def invalid(cls, binary_path: Path, error: str) -> "PhpInstallation":
        return cls(version="", full_version="", formula=config.PHP_FORMULA,
                   binary_path=binary_path, valid=False, error=error)

    @property
    def active_extensions(self) -> frozenset:
        return frozenset(ext.name for ext in self.extensions if ext.enabled)


@dataclass(frozen=True)
class InstalledVersionSet:
    """Deduplicated, ordered versions known to be installed, alias included."""
    versions: Tuple[str, ...]
    alias: str

    def __iter__(self) -> Iterator[str]:
        return iter(self.versions)

    def __len__(self) -> int:
        return len(self.versions)

    def __contains__(self, version: object) -> bool:
        return version in self.versions


class PhpRegistry:
    """Discovers installed PHP versions and resolves the active installation."""

    def __init__(self, paths: config.EnvironmentPaths, gateway: CommandGateway,
                 supported_versions: Sequence[str] = config.SUPPORTED_PHP_VERSIONS,
                 default_alias: str = config.DEFAULT_PHP_ALIAS):
        self.paths = paths
        self.gateway = gateway
        self.supported_versions = tuple(supported_versions)
        self.alias_version = default_alias

    def formula_for(self, version: str) -> str:
        if version == self.alias_version:
            return config.PHP_FORMULA
        return f"{config.PHP_FORMULA_PREFIX}{version}"

    # --- Alias ---
    def resolve_alias_version(self) -> str:
        """Asks the package manager which version the unversioned formula points to."""
        try:
            result = self.gateway.run([self.paths.brew, "info", config.PHP_FORMULA, "--json"])
        except CommandSpawnError as e:
            logger.error(f"PHP_MANAGER: Could not query alias version: {e}")
            return self.alias_version

        if not result.ok:
            logger.warning(f"PHP_MANAGER: 'brew info php' failed, keeping alias {self.alias_version}.")
            return self.alias_version

        try:
            data = json.loads(result.stdout)
            stable = data[0]["versions"]["stable"]
        except (ValueError, LookupError, TypeError) as e:
            logger.warning(f"PHP_MANAGER: Unexpected 'brew info' output, keeping alias {self.alias_version}: {e}")
            return self.alias_version

        parsed = parse_php_version(str(stable))
        if parsed is None:
            logger.warning(f"PHP_MANAGER: Unparsable alias version '{stable}'.")
            return self.alias_version

        self.alias_version = parsed[1]
        logger.debug(f"PHP_MANAGER: '{config.PHP_FORMULA}' is aliased to {self.alias_version}")
        return self.alias_version

    # --- Discovery ---
    def list_formula_directories(self) -> List[str]:
        opt_dir = self.paths.opt
        try:
            return [item.name for item in opt_dir.iterdir()
                    if item.name.startswith(config.PHP_FORMULA_PREFIX)]
        except OSError as e:
            logger.error(f"PHP_MANAGER: Could not list {opt_dir}: {e}")
            return []

    def discover_versions(self) -> InstalledVersionSet:
        alias = self.resolve_alias_version()
        versions: List[str] = []
        for name in self.list_formula_directories():
            version = name[len(config.PHP_FORMULA_PREFIX):]
            if version in versions:
                continue
            if version not in self.supported_versions:
                logger.debug(f"PHP_MANAGER: Ignoring unsupported formula directory '{name}'.")
                continue
            versions.append(version)

        # `php` may be installed without a matching `php@X.Y` directory.
        if alias not in versions:
            versions.append(alias)

        versions.sort(key=version_sort_key)
        logger.info(f"PHP_MANAGER: Detected PHP versions: {', '.join(versions)} (alias: {alias})")
        return InstalledVersionSet(versions=tuple(versions), alias=alias)

    # --- Active installation ---
    def _active_binary(self) -> Path:
        try:
            return self.paths.php.resolve()
        except (OSError, RuntimeError) as e:
            logger.debug(f"PHP_MANAGER: Could not resolve {self.paths.php}: {e}")
            return self.paths.php

    def resolve_active(self) -> PhpInstallation:
        binary = self._active_binary()
        try:
            result = self.gateway.run([self.paths.php_config, "--version"])
        except CommandSpawnError as e:
            return PhpInstallation.invalid(binary, f"spawn failure: {e.reason}")

        if not result.ok:
            return PhpInstallation.invalid(binary, result.stderr or f"php-config exited with {result.exit_code}")

        parsed = parse_php_version(result.stdout)
        if parsed is None:
            logger.warning(f"PHP_MANAGER: Could not parse PHP version from '{result.stdout}'.")
            return PhpInstallation.invalid(binary, f"unparsable version output: {result.stdout!r}")

        full_version, short_version = parsed
        memory_limit, upload_max, post_max = self._read_limits()
        ini_path = self.paths.php_ini(short_version)
        conf_d_path = self.paths.php_conf_d(short_version)
        return PhpInstallation(
            version=short_version,
            full_version=full_version,
            formula=self.formula_for(short_version),
            binary_path=binary,
            extensions=tuple(self._scan_extensions(ini_path, conf_d_path)),
            memory_limit=memory_limit,
            upload_max_filesize=upload_max,
            post_max_size=post_max,
            ini_path=ini_path,
            conf_d_path=conf_d_path,
        )

    def _read_limits(self) -> Tuple[str, str, str]:
        try:
            result = self.gateway.run([self.paths.php, "-r", LIMITS_SNIPPET])
        except CommandSpawnError:
            return "", "", ""
        parts = result.stdout.split("|") if result.ok else []
        if len(parts) != 3:
            logger.debug(f"PHP_MANAGER: Could not read limits from '{result.stdout}'.")
            return "", "", ""
        return parts[0].strip(), parts[1].strip(), parts[2].strip()

    def _scan_extensions(self, ini_path: Path, conf_d_path: Path) -> List[PhpExtension]:
        files: List[Path] = []
        if ini_path.is_file():
            files.append(ini_path)
        if conf_d_path.is_dir():
            files.extend(sorted(conf_d_path.glob("*.ini")))
        extensions: List[PhpExtension] = []
        for ini_file in files:
            extensions.extend(load_extensions(ini_file))
        return extensions


def toggle_extension(extension: PhpExtension) -> Tuple[bool, str]:
    """Comments out (or back in) the directive that declares ``extension``."""
    ini_file = extension.file
    try:
        lines = ini_file.read_text(encoding='utf-8').splitlines(keepends=True)
    except OSError as e:
        logger.error(f"PHP_MANAGER: Could not read {ini_file}: {e}")
        return False, f"Could not read {ini_file}: {e}"

    changed = False
    for index, line in enumerate(lines):
        match = EXTENSION_LINE_RE.match(line)
        if not match or match.group('kind').lower() != extension.kind:
            continue
        if _extension_name(match.group('value')) != extension.name:
            continue
        if (match.group('comment') is None) != extension.enabled:
            continue
        if extension.enabled:
            lines[index] = ";" + line.lstrip()
        else:
            lines[index] = re.sub(r'^\s*;\s*', '', line, count=1)
        changed = True
        break

    if not changed:
        return False, f"Directive for '{extension.name}' not found in {ini_file}"

    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(dir=str(ini_file.parent), prefix=".phpswitcher-")
        with os.fdopen(fd, 'w', encoding='utf-8') as tmp_file:
            tmp_file.writelines(lines)
        shutil.copymode(ini_file, tmp_name)
        os.replace(tmp_name, ini_file)
    except OSError as e:
        logger.error(f"PHP_MANAGER: Could not write {ini_file}: {e}", exc_info=True)
        if tmp_name is not None and os.path.exists(tmp_name):
            try:
                os.unlink(tmp_name)
            except OSError as cleanup_e:
                logger.warning(f"PHP_MANAGER: Could not remove temp file {tmp_name}: {cleanup_e}")
        return False, f"Could not write {ini_file}: {e}"

    state = "disabled" if extension.enabled else "enabled"
    logger.info(f"PHP_MANAGER: Extension '{extension.name}' {state} in {ini_file}")
    return True, f"Extension '{extension.name}' {state}."


def write_php_info_report(paths: config.EnvironmentPaths, gateway: CommandGateway,
                          script_path: Path = config.PHPINFO_SCRIPT,
                          report_path: Path = config.PHPINFO_REPORT) -> Tuple[bool, str]:
    """Renders phpinfo() of the active PHP into an HTML file. Returns (ok, report path or error)."""
    try:
        script_path.write_text("<?php phpinfo();", encoding='utf-8')
    except OSError as e:
        logger.error(f"PHP_MANAGER: Could not write {script_path}: {e}")
        return False, str(e)

    result = gateway.run([paths.php_cgi, "-q", script_path])
    if not result.ok:
        return False, result.stderr or f"php-cgi exited with {result.exit_code}"

    try:
        report_path.write_text(result.stdout, encoding='utf-8')
    except OSError as e:
        logger.error(f"PHP_MANAGER: Could not write {report_path}: {e}")
        return False, str(e)
    return True, str(report_path)
