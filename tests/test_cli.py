import pytest

from phpswitcher import cli
from phpswitcher.core.environment import EnvironmentValidator
from phpswitcher.core.system_utils import CommandResult


@pytest.fixture
def wired(monkeypatch, homebrew_root, sudoers_dir, gateway):
    monkeypatch.setattr(cli, "EnvironmentValidator", lambda: EnvironmentValidator(
        gateway=gateway, roots=(homebrew_root,), sudoers_dir=sudoers_dir, extra_valet_candidates=()
    ))
    monkeypatch.setattr(cli, "CommandGateway", lambda paths: gateway)
    return gateway


def test_no_command_prints_help(capsys):
    assert cli.run([]) == 1
    assert "usage:" in capsys.readouterr().out


def test_check(wired, capsys):
    assert cli.run(["check"]) == 0

    out = capsys.readouterr().out
    assert "[ok] brew_installed" in out
    assert "[ok] single_php_service" in out


def test_failed_check_exits_with_error(wired, sudoers_dir, capsys):
    (sudoers_dir / "valet").unlink()

    with pytest.raises(SystemExit) as exc_info:
        cli.run(["list"])

    assert exc_info.value.code == 1
    err = capsys.readouterr().err
    assert "valet_trusted" in err
    assert "Hint:" in err


def test_list_marks_active_version(wired, capsys):
    assert cli.run(["list"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines == ["  7.4", "  8.0", "* 8.1 (php)"]


def test_current(wired, capsys):
    assert cli.run(["current"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("PHP 8.1.12 (php)")
    assert "memory_limit: 128M" in out
    assert "extensions: intl, xdebug" in out


def test_use_unknown_version(wired, capsys):
    assert cli.run(["use", "5.6"]) == 1
    assert "not installed" in capsys.readouterr().err
    assert ("valet", "use", "php@5.6") not in wired.commands()


def test_use_version(wired, switching_gateway, capsys):
    assert cli.run(["use", "7.4"]) == 0

    assert "Active: PHP 7.4.0" in capsys.readouterr().out
    assert ("valet", "use", "php@7.4") in wired.commands()


def test_use_version_not_confirmed(wired, capsys):
    wired.set(("valet", "use"), CommandResult(1, "", "nope"))

    assert cli.run(["use", "7.4"]) == 1

    err = capsys.readouterr().err
    assert "valet use php@7.4" in err
    assert "PHP 8.1 is active" in err


def test_fix(wired):
    assert cli.run(["fix"]) == 0
    assert ("brew", "link", "php") in wired.commands("brew")


def test_restart_all(wired):
    assert cli.run(["restart", "all"]) == 0
    assert [c for c in wired.commands("brew") if c[1:3] == ("services", "restart")] == [
        ("brew", "services", "restart", "dnsmasq"),
        ("brew", "services", "restart", "php"),
        ("brew", "services", "restart", "nginx"),
    ]


def test_restart_rejects_unknown_service(capsys):
    with pytest.raises(SystemExit) as exc_info:
        cli.run(["restart", "apache"])

    assert exc_info.value.code == 2


def test_phpinfo_prints_report_path(wired, tmp_path, monkeypatch, capsys):
    from phpswitcher.managers.php_manager import write_php_info_report
    report = tmp_path / "info.html"
    monkeypatch.setattr(
        "phpswitcher.core.orchestrator.write_php_info_report",
        lambda paths, gateway: write_php_info_report(paths, gateway, tmp_path / "info.php", report),
    )
    wired.set(("php-cgi",), CommandResult(0, "<html>phpinfo</html>", ""))

    assert cli.run(["phpinfo"]) == 0

    assert capsys.readouterr().out.strip() == str(report)
    assert report.read_text(encoding="utf-8") == "<html>phpinfo</html>"
