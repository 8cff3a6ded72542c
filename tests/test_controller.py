import time

import pytest

from phpswitcher.core.environment import EnvironmentCheckResult, EnvironmentValidator, ValidationReport
from phpswitcher.core.system_utils import CommandResult
from phpswitcher.core.worker import Worker
from phpswitcher.managers import php_manager
from phpswitcher.ui.controller import StatusController


class FakePresenter:
    def __init__(self, retry_answers=()):
        self.renders = []
        self.notifications = []
        self.opened = []
        self.retry_answers = list(retry_answers)
        self.retry_asked = []

    def render_state(self, installation, busy, versions):
        self.renders.append((installation, busy, versions))

    def notify(self, title, body):
        self.notifications.append((title, body))

    def ask_retry(self, failure):
        self.retry_asked.append(failure)
        return self.retry_answers.pop(0) if self.retry_answers else False

    def open_path(self, path):
        self.opened.append(path)


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def make_controller(qapp, presenter, homebrew_root, sudoers_dir, gateway):
    controllers = []

    def factory(validator_factory=None, refresh_interval_ms=60_000):
        worker = Worker(
            validator_factory=validator_factory or (lambda: EnvironmentValidator(
                gateway=gateway, roots=(homebrew_root,), sudoers_dir=sudoers_dir, extra_valet_candidates=()
            )),
            gateway_factory=lambda paths: gateway,
        )
        controller = StatusController(presenter, worker=worker, threaded=False,
                                      refresh_interval_ms=refresh_interval_ms)
        controllers.append(controller)
        return controller

    yield factory
    for controller in controllers:
        controller.shutdown()


@pytest.fixture
def started(make_controller):
    controller = make_controller()
    controller.startup()
    return controller


class TestStartup:
    def test_successful_validation(self, started, presenter):
        assert started.orchestrator is not None
        assert started.timer.isActive()
        assert tuple(started.versions) == ("7.4", "8.0", "8.1")
        assert presenter.renders[0] == (None, True, None)
        installation, busy, versions = presenter.renders[-1]
        assert installation.version == "8.1"
        assert not busy
        assert str(installation.ini_path) in started.watcher.watched_paths

    def test_failed_validation_asks_to_retry(self, make_controller, presenter):
        presenter.retry_answers = [True, False]
        failure = EnvironmentCheckResult("valet_installed", False, "Laravel Valet could not be found.", "Install it.")
        validations = []

        def validator_factory():
            validations.append(True)
            return type("Stub", (), {"validate": lambda self: ValidationReport(False, (failure,))})()

        controller = make_controller(validator_factory)
        controller.startup()

        assert len(validations) == 2
        assert presenter.retry_asked == [failure, failure]
        assert controller.orchestrator is None
        assert not controller.timer.isActive()

    def test_requests_before_startup_are_ignored(self, make_controller, gateway):
        controller = make_controller()

        assert not controller.request_switch("7.4")
        assert not controller.request_force_recover()
        controller.request_refresh()

        assert gateway.calls == []


class TestRequests:
    def test_switch_notifies_new_version(self, started, presenter, switching_gateway):
        assert started.request_switch("7.4")

        assert started.installation.version == "7.4"
        assert not started.busy
        assert presenter.notifications[-1][0] == "PHP 7.4 is now active"
        assert presenter.renders[-1][0].version == "7.4"

    def test_unconfirmed_switch_is_reported(self, started, presenter, gateway):
        gateway.set(("valet", "use"), CommandResult(1, "", "nope"))

        assert started.request_switch("7.4")

        title, body = presenter.notifications[-1]
        assert title == "PHP switch may have failed"
        assert "7.4" in body and "8.1" in body
        assert started.installation.version == "8.1"

    def test_switch_while_busy_is_dropped(self, started, gateway):
        assert started.orchestrator.try_begin()
        calls_before = len(gateway.calls)

        assert not started.request_switch("7.4")
        assert not started.request_restart("nginx")

        assert len(gateway.calls) == calls_before

    def test_force_recover_notifies_start_and_end(self, started, presenter):
        assert started.request_force_recover()

        titles = [title for title, _ in presenter.notifications]
        assert titles == ["Fixing your PHP setup", "PHP setup repaired"]
        assert not started.busy

    def test_restart_unknown_service(self, started, gateway):
        calls_before = len(gateway.calls)

        assert not started.request_restart("apache")
        assert len(gateway.calls) == calls_before

    def test_refresh_replaces_installation(self, started, switching_gateway):
        switching_gateway.set(("php-config", "--version"), CommandResult(0, "8.0.30", ""))

        started.request_refresh()

        assert started.installation.full_version == "8.0.30"

    def test_refresh_reflects_broken_php(self, started, presenter, gateway):
        gateway.set(("php-config", "--version"), CommandResult(0, "garbage", ""))

        started.request_refresh()

        assert not started.installation.valid
        assert started.watcher.watched_paths == []

    def test_toggle_extension(self, started):
        gd = next(ext for ext in started.installation.extensions if ext.name == "gd")

        assert started.request_toggle_extension(gd)

        assert "gd" in started.installation.active_extensions

    def test_php_info_opens_report(self, started, presenter, gateway, tmp_path, monkeypatch):
        script, report = tmp_path / "info.php", tmp_path / "info.html"
        original = php_manager.write_php_info_report
        monkeypatch.setattr("phpswitcher.core.orchestrator.write_php_info_report",
                            lambda paths, gw: original(paths, gw, script, report))
        gateway.set(("php-cgi",), CommandResult(0, "<html></html>", ""))

        assert started.request_php_info()

        assert presenter.opened == [report]
        assert not started.busy
        assert not presenter.renders[-1][1]

    def test_php_info_while_busy_is_dropped(self, started, presenter, gateway):
        assert started.orchestrator.try_begin("7.4")

        assert not started.request_php_info()

        assert gateway.commands("php-cgi") == []
        assert presenter.opened == []

    def test_switch_without_version_does_not_hold_the_gate(self, started, presenter, switching_gateway):
        assert not started.request_switch("")

        assert not started.busy
        assert not presenter.renders[-1][1]
        assert started.request_switch("7.4")
        assert started.installation.version == "7.4"

    def test_open_config_folder(self, started, presenter, paths):
        started.open_config_folder()

        assert presenter.opened == [paths.etc / "php" / "8.1"]


class TestRefreshSources:
    def test_config_change_refreshes_and_renders(self, started, presenter, gateway):
        gateway.set(("php-config", "--version"), CommandResult(0, "8.0.30", ""))

        started.watcher.configChanged.emit()

        assert started.installation.full_version == "8.0.30"
        assert presenter.renders[-1][0].full_version == "8.0.30"

    def test_poll_timer_refreshes_and_renders(self, qapp, make_controller, presenter, gateway):
        controller = make_controller(refresh_interval_ms=10)
        controller.startup()
        assert controller.timer.isActive()
        gateway.set(("php-config", "--version"), CommandResult(0, "8.0.30", ""))

        deadline = time.monotonic() + 2
        while controller.installation.full_version != "8.0.30" and time.monotonic() < deadline:
            qapp.processEvents()
            time.sleep(0.01)

        assert controller.installation.full_version == "8.0.30"
        assert presenter.renders[-1][0].full_version == "8.0.30"
