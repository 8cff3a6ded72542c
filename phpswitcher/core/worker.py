import logging
from typing import Any, Callable, Dict, Optional, Tuple

from PySide6.QtCore import QObject, Signal, Slot

from . import config
from .environment import EnvironmentValidator
from .orchestrator import OrchestrationResult, SwitchOrchestrator
from .system_utils import CommandGateway
from ..managers.php_manager import PhpRegistry

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Dict[str, Any]], Tuple[bool, str, Dict[str, Any]]]


class Worker(QObject):
    """
    Worker object that performs tasks in a separate thread.
    Emits resultReady signal when a task is complete.

    Tasks that change PHP or its services expect the controller to have
    claimed the orchestrator gate (``try_begin``) before posting them.
    """
    resultReady = Signal(str, object, bool, str)  # task_name, context_data, success, message
    stateChanged = Signal(object)  # SwitchState, emitted from this thread

    def __init__(self, validator_factory: Callable[[], EnvironmentValidator] = EnvironmentValidator,
                 gateway_factory: Callable[[config.EnvironmentPaths], CommandGateway] = CommandGateway) -> None:
        super().__init__()
        self.validator_factory = validator_factory
        self.gateway_factory = gateway_factory
        self.orchestrator: Optional[SwitchOrchestrator] = None
        self.task_handlers: Dict[str, TaskHandler] = {
            "validate_environment": self._task_validate_environment,
            "discover_versions": self._task_discover_versions,
            "refresh_installation": self._task_refresh_installation,
            "switch_php": self._task_switch_php,
            "force_recover": self._task_force_recover,
            "restart_service": self._task_restart_service,
            "toggle_extension": self._task_toggle_extension,
            "php_info": self._task_php_info,
        }

    def build_orchestrator(self, paths: config.EnvironmentPaths) -> SwitchOrchestrator:
        gateway = self.gateway_factory(paths)
        registry = PhpRegistry(paths, gateway)
        return SwitchOrchestrator(paths, gateway, registry, on_state_changed=self.stateChanged.emit)

    # --- Private Helper Methods for Tasks ---

    def _task_validate_environment(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        context_data_to_emit: Dict[str, Any] = data.copy()
        report = self.validator_factory().validate()
        context_data_to_emit["report"] = report
        if not report.passed:
            failure = report.failure
            return False, failure.diagnostic if failure else "Environment check failed.", context_data_to_emit

        self.orchestrator = self.build_orchestrator(report.paths)
        context_data_to_emit["orchestrator"] = self.orchestrator
        context_data_to_emit["versions"] = self.orchestrator.registry.discover_versions()
        context_data_to_emit["installation"] = self.orchestrator.periodic_refresh()
        return True, "Environment OK.", context_data_to_emit

    def _task_discover_versions(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        context_data_to_emit: Dict[str, Any] = data.copy()
        versions = self._require_orchestrator().registry.discover_versions()
        context_data_to_emit["versions"] = versions
        return True, f"Found {len(versions)} PHP version(s).", context_data_to_emit

    def _task_refresh_installation(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        context_data_to_emit: Dict[str, Any] = data.copy()
        orchestrator = self._require_orchestrator()
        if data.get("include_versions"):
            context_data_to_emit["versions"] = orchestrator.registry.discover_versions()
        installation = orchestrator.periodic_refresh()
        context_data_to_emit["installation"] = installation
        return installation.valid, installation.error or f"PHP {installation.version} active.", context_data_to_emit

    def _task_switch_php(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        version: str = data.get("version") or ""
        return self._emit_orchestration(data, self._require_orchestrator().run_switch(version))

    def _task_force_recover(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        return self._emit_orchestration(data, self._require_orchestrator().run_force_recover())

    def _task_restart_service(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        service_id: str = data.get("service_id", "all")
        return self._emit_orchestration(data, self._require_orchestrator().run_restart(service_id))

    def _task_toggle_extension(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        extension = data.get("extension")
        return self._emit_orchestration(data, self._require_orchestrator().run_toggle_extension(extension))

    def _task_php_info(self, data: Dict[str, Any]) -> Tuple[bool, str, Dict[str, Any]]:
        context_data_to_emit: Dict[str, Any] = data.copy()
        ok, detail = self._require_orchestrator().run_php_info()
        if ok:
            context_data_to_emit["report_path"] = detail
        return ok, detail, context_data_to_emit

    def _emit_orchestration(self, data: Dict[str, Any],
                            result: OrchestrationResult) -> Tuple[bool, str, Dict[str, Any]]:
        context_data_to_emit: Dict[str, Any] = data.copy()
        context_data_to_emit["result"] = result
        context_data_to_emit["installation"] = result.installation
        if result.aborted:
            message = f"'{result.operation}' aborted: {result.error}"
        elif result.failed_steps:
            message = f"'{result.operation}' finished, failed steps: {' | '.join(result.failed_steps)}"
        else:
            message = f"'{result.operation}' finished."
        return result.success, message, context_data_to_emit

    def _require_orchestrator(self) -> SwitchOrchestrator:
        if self.orchestrator is None:
            raise RuntimeError("Environment has not been validated yet.")
        return self.orchestrator

    @Slot(str, object)
    def doWork(self, task_name: str, data: dict) -> None:
        local_success: bool = False
        local_message: str = f"Task '{task_name}' handler not found or not implemented."
        context_data_to_emit: Dict[str, Any] = dict(data)

        logger.info(f"WORKER: Received task '{task_name}' with data: {data}")

        try:
            handler: Optional[TaskHandler] = self.task_handlers.get(task_name)
            if handler:
                local_success, local_message, context_data_to_emit = handler(data)
            else:
                logger.warning(f"WORKER: No handler registered for task '{task_name}'.")
            logger.info(f"WORKER: Task '{task_name}' processing finished. Success: {local_success}, Message: {local_message}")
        except Exception as e:
            logger.error(f"WORKER: EXCEPTION during task '{task_name}' execution: {e}", exc_info=True)
            local_success = False
            local_message = f"Unexpected error in worker for task '{task_name}': {type(e).__name__} - {e}"
        finally:
            logger.debug(f"WORKER: Emitting resultReady for '{task_name}' (Success={local_success}) Context Keys: {list(context_data_to_emit.keys())}")
            self.resultReady.emit(task_name, context_data_to_emit, local_success, local_message)
