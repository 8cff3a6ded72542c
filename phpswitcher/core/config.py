import os
import sys
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

APP_NAME = "PHP Switcher"

# --- Base Directories ---
CONFIG_DIR = Path(os.environ.get('XDG_CONFIG_HOME', Path.home() / '.config')) / 'phpswitcher'
LOG_DIR = CONFIG_DIR / 'logs'

# --- Package Manager Roots ---
# Apple Silicon root first, then the Intel/legacy root. First existing root wins.
HOMEBREW_ROOTS: Tuple[Path, ...] = (Path("/opt/homebrew"), Path("/usr/local"))

# Privilege escalation trust files (sudoers.d entries)
SUDOERS_DIR = Path("/private/etc/sudoers.d") if sys.platform == "darwin" else Path("/etc/sudoers.d")
BREW_TRUST_FILE_NAME = "brew"
VALET_TRUST_FILE_NAME = "valet"

ESCALATION_PREFIX: Tuple[str, ...] = ("sudo", "-n")

# --- PHP ---
SUPPORTED_PHP_VERSIONS: Tuple[str, ...] = (
    "5.6", "7.0", "7.1", "7.2", "7.3", "7.4",
    "8.0", "8.1", "8.2", "8.3", "8.4",
)
# Used until the package manager has told us what `php` is aliased to.
DEFAULT_PHP_ALIAS = "8.0"
PHP_FORMULA = "php"
PHP_FORMULA_PREFIX = "php@"

# --- Site Router (Valet) ---
VALET_CONFIG_DIR = Path.home() / '.config' / 'valet'
COMPOSER_VALET_BINARY = Path.home() / '.composer' / 'vendor' / 'bin' / 'valet'

# --- Timing ---
REFRESH_INTERVAL_MS = 60 * 1000
WATCHER_DEBOUNCE_MS = 1000

# --- phpinfo() report (written then read back, not meant to persist) ---
PHPINFO_SCRIPT = Path("/tmp/phpswitcher_phpinfo.php")
PHPINFO_REPORT = Path("/tmp/phpswitcher_phpinfo.html")


@dataclass(frozen=True)
class ServiceDescriptor:
    """A package-manager service the orchestrator stops and restarts."""
    service_id: str
    formula: str
    display_name: str
    requires_privilege: bool = True


SERVICES: Dict[str, ServiceDescriptor] = {
    "php": ServiceDescriptor("php", PHP_FORMULA, "PHP-FPM"),
    "nginx": ServiceDescriptor("nginx", "nginx", "Nginx (site router)"),
    "dnsmasq": ServiceDescriptor("dnsmasq", "dnsmasq", "DnsMasq (name resolution)"),
}


@dataclass(frozen=True)
class EnvironmentPaths:
    """
    Process-wide paths latched by a passing environment validation.

    Built once and handed to the gateway, registry and orchestrator; never
    mutated. A retry of the validation produces a new instance.
    """
    base: Path
    valet: Path

    @property
    def bin(self) -> Path:
        return self.base / "bin"

    @property
    def opt(self) -> Path:
        return self.base / "opt"

    @property
    def etc(self) -> Path:
        return self.base / "etc"

    @property
    def brew(self) -> Path:
        return self.bin / "brew"

    @property
    def php(self) -> Path:
        return self.bin / "php"

    @property
    def php_config(self) -> Path:
        return self.bin / "php-config"

    @property
    def php_cgi(self) -> Path:
        return self.bin / "php-cgi"

    def php_ini(self, short_version: str) -> Path:
        return self.etc / "php" / short_version / "php.ini"

    def php_conf_d(self, short_version: str) -> Path:
        return self.etc / "php" / short_version / "conf.d"


def ensure_dir(path: Optional[Path]) -> bool:
    """Creates a directory if it doesn't exist. Returns True on success."""
    if path is None:
        return False
    try:
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {path}")
        return True
    except OSError as e:
        logger.error(f"CONFIG_ERROR: Error creating directory {path}: {e}", exc_info=True)
        return False
