import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from PySide6.QtCore import QCoreApplication, QObject, QThread, QTimer, Signal, Slot

from ..core import config
from ..core.config_watcher import PhpConfigWatcher
from ..core.environment import EnvironmentCheckResult
from ..core.orchestrator import OrchestrationResult, SwitchOrchestrator
from ..core.worker import Worker
from ..managers.php_manager import InstalledVersionSet, PhpExtension, PhpInstallation
from .strings import tr

logger = logging.getLogger(__name__)


class Presenter(Protocol):
    def render_state(self, installation: Optional[PhpInstallation], busy: bool,
                     versions: Optional[InstalledVersionSet]) -> None: ...

    def notify(self, title: str, body: str) -> None: ...

    def ask_retry(self, failure: EnvironmentCheckResult) -> bool: ...

    def open_path(self, path: Path) -> None: ...


class StatusController(QObject):
    """
    Owns the worker thread, the poll timer and the config watcher.

    Lives on the presentation thread. Every refresh source posts the same
    ``refresh_installation`` task, and only ``handleWorkerResult`` replaces
    ``installation`` / ``versions`` before rendering.
    """
    triggerWorker = Signal(str, object)

    def __init__(self, presenter: Presenter, worker: Optional[Worker] = None,
                 parent: Optional[QObject] = None, threaded: bool = True,
                 refresh_interval_ms: int = config.REFRESH_INTERVAL_MS):
        super().__init__(parent)
        self.presenter = presenter
        self.orchestrator: Optional[SwitchOrchestrator] = None
        self.installation: Optional[PhpInstallation] = None
        self.versions: Optional[InstalledVersionSet] = None
        self._validating = False

        # --- Setup Worker Thread ---
        self.worker = worker or Worker()
        self.thread: Optional[QThread] = None
        if threaded:
            self.thread = QThread(self)
            self.worker.moveToThread(self.thread)
            self.thread.finished.connect(self.worker.deleteLater)
        self.triggerWorker.connect(self.worker.doWork)
        self.worker.resultReady.connect(self.handleWorkerResult)
        self.worker.stateChanged.connect(self._on_switch_state_changed)
        if self.thread is not None:
            self.thread.start()

        # --- Periodic poll ---
        self.timer = QTimer(self)
        self.timer.setInterval(refresh_interval_ms)
        self.timer.timeout.connect(self.request_refresh)

        # --- Config watcher ---
        self.watcher = PhpConfigWatcher(self)
        self.watcher.configChanged.connect(self.request_refresh)

    @property
    def busy(self) -> bool:
        return self.orchestrator is not None and self.orchestrator.busy

    # --- Lifecycle ---
    def startup(self) -> None:
        if self._validating:
            return
        self._validating = True
        logger.info("CONTROLLER: Running environment checks...")
        self.presenter.render_state(None, True, None)
        self.triggerWorker.emit("validate_environment", {})

    def shutdown(self) -> None:
        self.timer.stop()
        self.watcher.clear()
        if self.thread is not None and self.thread.isRunning():
            logger.info("CONTROLLER: Quitting worker thread...")
            self.thread.quit()
            if not self.thread.wait(2000):
                logger.warning("CONTROLLER: Worker thread did not finish in time.")

    # --- Requests (presentation thread) ---
    @Slot()
    def request_refresh(self, include_versions: bool = False) -> None:
        if self.orchestrator is None:
            return
        self.triggerWorker.emit("refresh_installation", {"include_versions": include_versions})

    def request_switch(self, version: str) -> bool:
        if not version:
            logger.warning("CONTROLLER: Switch requested without a version, ignoring.")
            return False
        if not self._claim(version):
            return False
        self.triggerWorker.emit("switch_php", {"version": version})
        return True

    def request_force_recover(self) -> bool:
        if not self._claim():
            return False
        self.presenter.notify(tr("alert.force_reload.title"), tr("alert.force_reload.info"))
        self.triggerWorker.emit("force_recover", {})
        return True

    def request_restart(self, service_id: str) -> bool:
        if service_id != "all" and service_id not in config.SERVICES:
            logger.error(f"CONTROLLER: Unknown service '{service_id}'")
            return False
        if not self._claim():
            return False
        self.triggerWorker.emit("restart_service", {"service_id": service_id})
        return True

    def request_toggle_extension(self, extension: PhpExtension) -> bool:
        if not self._claim():
            return False
        self.triggerWorker.emit("toggle_extension", {"extension": extension})
        return True

    def request_php_info(self) -> bool:
        if not self._claim():
            return False
        self.triggerWorker.emit("php_info", {})
        return True

    def open_config_folder(self) -> None:
        if self.orchestrator is None:
            return
        installation = self.installation
        if installation is not None and installation.valid and installation.ini_path is not None:
            self.presenter.open_path(installation.ini_path.parent)
        else:
            self.presenter.open_path(self.orchestrator.paths.etc / "php")

    def open_valet_config_folder(self) -> None:
        self.presenter.open_path(config.VALET_CONFIG_DIR)

    def _claim(self, target_version: Optional[str] = None) -> bool:
        if self.orchestrator is None:
            logger.warning("CONTROLLER: Not ready yet, ignoring request.")
            return False
        # try_begin notifies stateChanged, which renders the busy state.
        return self.orchestrator.try_begin(target_version)

    # --- Results (presentation thread) ---
    @Slot(object)
    def _on_switch_state_changed(self, state: Any) -> None:
        self._render()

    @Slot(str, object, bool, str)
    def handleWorkerResult(self, task_name: str, context_data: dict, success: bool, message: str) -> None:
        logger.debug(f"CONTROLLER: handleWorkerResult for task '{task_name}'. Success: {success}. {message}")

        if task_name == "validate_environment":
            self._on_validation_finished(context_data, success)
            return

        if task_name == "php_info":
            if success:
                self.presenter.open_path(Path(context_data["report_path"]))
            else:
                logger.error(f"CONTROLLER: phpinfo() report failed: {message}")
            return

        self._apply(context_data.get("installation"), context_data.get("versions"))

        result: Optional[OrchestrationResult] = context_data.get("result")
        if result is None:
            return

        # Final resync; also corrects state after an aborted run.
        self.request_refresh(include_versions=task_name == "force_recover")

        if task_name == "switch_php":
            self._notify_switch(context_data.get("version"), result)
        elif task_name == "force_recover":
            active = result.installation.version if result.installation and result.installation.valid else "?"
            self.presenter.notify(tr("alert.force_reload_done.title"),
                                  tr("alert.force_reload_done.info", version=active))

    def _on_validation_finished(self, context_data: dict, success: bool) -> None:
        self._validating = False
        if not success:
            report = context_data.get("report")
            failure = report.failure if report is not None else None
            if failure is None:
                failure = EnvironmentCheckResult("unknown", False, "The environment could not be checked.")
            logger.error(f"CONTROLLER: Environment check '{failure.check_id}' failed: {failure.diagnostic}")
            if self.presenter.ask_retry(failure):
                self.startup()
            else:
                QCoreApplication.exit(1)
            return

        self.orchestrator = context_data["orchestrator"]
        self._apply(context_data.get("installation"), context_data.get("versions"))
        self.timer.start()
        logger.info("CONTROLLER: Environment OK, polling every "
                    f"{self.timer.interval() // 1000}s.")

    def _notify_switch(self, target: Optional[str], result: OrchestrationResult) -> None:
        installation = result.installation
        if installation is not None and installation.valid and installation.version == target:
            self.presenter.notify(tr("notification.version_changed_title", version=target),
                                  tr("notification.version_changed_desc", version=target))
        else:
            actual = installation.version if installation is not None and installation.valid else "unknown"
            self.presenter.notify(tr("notification.switch_unconfirmed_title"),
                                  tr("notification.switch_unconfirmed_desc", target=target, actual=actual))

    def _apply(self, installation: Optional[PhpInstallation], versions: Optional[InstalledVersionSet]) -> None:
        if versions is not None:
            self.versions = versions
        if installation is not None:
            self.installation = installation
            self.watcher.watch(installation)
        self._render()

    def _render(self) -> None:
        self.presenter.render_state(self.installation, self.busy, self.versions)
