"""Pytest fixtures and utilities for phpswitcher tests."""

import json
import os
import stat
from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple, Union

import pytest

from phpswitcher.core import config
from phpswitcher.core.system_utils import CommandResult

Response = Union[CommandResult, BaseException, Callable[[Tuple[str, ...]], CommandResult]]

OK = CommandResult(0, "", "")


def normalize(command: Sequence) -> Tuple[str, ...]:
    """Reduces the program to its base name so tests can match on e.g. ('brew', 'services')."""
    parts = [str(part) for part in command]
    if parts:
        parts[0] = Path(parts[0]).name
    return tuple(parts)


class FakeGateway:
    """
    Stands in for CommandGateway.

    Responses are looked up by the longest matching command prefix. A
    response may be a CommandResult, an exception to raise, or a callable
    taking the normalized command.
    """

    def __init__(self, responses: Dict[Tuple[str, ...], Response] = None):
        self.responses: Dict[Tuple[str, ...], Response] = dict(responses or {})
        self.calls: List[Tuple[Tuple[str, ...], bool]] = []

    def set(self, prefix: Tuple[str, ...], response: Response) -> None:
        """Sets the response for ``prefix``, replacing any more specific ones under it."""
        for key in [key for key in self.responses if key[:len(prefix)] == prefix]:
            del self.responses[key]
        self.responses[prefix] = response

    def run(self, command, privileged: bool = False) -> CommandResult:
        normalized = normalize(command)
        self.calls.append((normalized, privileged))
        matches = [prefix for prefix in self.responses if normalized[:len(prefix)] == prefix]
        if not matches:
            return OK
        response = self.responses[max(matches, key=len)]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(normalized)
        return response

    def commands(self, program: str = None) -> List[Tuple[str, ...]]:
        return [command for command, _ in self.calls if program is None or command[0] == program]


def brew_info_json(stable: str) -> str:
    return json.dumps([{"name": "php", "versions": {"stable": stable, "head": None}}])


@pytest.fixture(scope="session")
def qapp():
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    from PySide6.QtWidgets import QApplication
    app = QApplication.instance() or QApplication([])
    yield app


@pytest.fixture
def homebrew_root(tmp_path: Path) -> Path:
    """A Homebrew-like tree with PHP 7.4, 8.0 and 8.1 installed and 8.1 configured."""
    root = tmp_path / "homebrew"
    bin_dir = root / "bin"
    bin_dir.mkdir(parents=True)
    for name in ("brew", "php", "php-config", "php-cgi", "valet"):
        binary = bin_dir / name
        binary.write_text("#!/bin/sh\n", encoding="utf-8")
        binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
    for version in ("7.4", "8.0", "8.1"):
        (root / "opt" / f"php@{version}").mkdir(parents=True)

    etc_dir = root / "etc" / "php" / "8.1"
    (etc_dir / "conf.d").mkdir(parents=True)
    (etc_dir / "php.ini").write_text(
        "[PHP]\n"
        "memory_limit = 128M\n"
        "extension=intl\n"
        ";extension=gd\n",
        encoding="utf-8",
    )
    (etc_dir / "conf.d" / "ext-xdebug.ini").write_text(
        '[xdebug]\nzend_extension="/opt/homebrew/lib/php/xdebug.so"\n',
        encoding="utf-8",
    )
    return root


@pytest.fixture
def sudoers_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "sudoers.d"
    directory.mkdir()
    (directory / config.BREW_TRUST_FILE_NAME).write_text("", encoding="utf-8")
    (directory / config.VALET_TRUST_FILE_NAME).write_text("", encoding="utf-8")
    return directory


@pytest.fixture
def paths(homebrew_root: Path) -> config.EnvironmentPaths:
    return config.EnvironmentPaths(base=homebrew_root, valet=homebrew_root / "bin" / "valet")


@pytest.fixture
def gateway() -> FakeGateway:
    """A gateway reporting PHP 8.1.12 as active and `php` aliased to 8.1."""
    return FakeGateway({
        ("php-config", "--version"): CommandResult(0, "8.1.12", ""),
        ("php", "-r"): CommandResult(0, "128M|2M|8M", ""),
        ("brew", "info", "php", "--json"): CommandResult(0, brew_info_json("8.1.12"), ""),
        ("brew", "services", "list"): CommandResult(
            0,
            "Name    Status  User File\n"
            "dnsmasq started root /Library/LaunchDaemons/homebrew.mxcl.dnsmasq.plist\n"
            "nginx   started root /Library/LaunchDaemons/homebrew.mxcl.nginx.plist\n"
            "php     started root /Library/LaunchDaemons/homebrew.mxcl.php.plist\n"
            "php@7.4 none\n",
            "",
        ),
    })


@pytest.fixture
def switching_gateway(gateway: FakeGateway) -> FakeGateway:
    """Like ``gateway``, but `valet use php@X.Y` really changes what php-config reports."""
    active = {"version": "8.1.12"}

    def use(command):
        active["version"] = command[2].split("@", 1)[1] + ".0"
        return OK

    gateway.set(("valet", "use"), use)
    gateway.set(("php-config", "--version"), lambda command: CommandResult(0, active["version"], ""))
    return gateway
