import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from . import config
from .system_utils import CommandGateway, CommandSpawnError
from ..managers import brew_manager
from ..managers.brew_manager import CommandStep
from ..managers.php_manager import (
    PhpExtension,
    PhpInstallation,
    PhpRegistry,
    toggle_extension,
    write_php_info_report,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SwitchState:
    busy: bool = False
    target_version: Optional[str] = None
    last_active_version: Optional[str] = None


@dataclass(frozen=True)
class OrchestrationResult:
    operation: str
    accepted: bool
    installation: Optional[PhpInstallation] = None
    target_version: Optional[str] = None
    failed_steps: Tuple[str, ...] = ()
    aborted: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.accepted and not self.aborted and not self.failed_steps

    @classmethod
    def rejected(cls, operation: str, target_version: Optional[str] = None) -> "OrchestrationResult":
        return cls(operation=operation, accepted=False, target_version=target_version,
                   error="Another operation is in progress.")


StateListener = Callable[[SwitchState], None]
Body = Callable[[], Tuple[List[str], Optional[PhpInstallation]]]


class SwitchOrchestrator:
    """
    Runs version switches and other multi-step service operations.

    At most one operation runs at a time. Entry goes through a non-blocking
    gate: a request made while another run is in flight is dropped, not
    queued. Steps are never rolled back; a failing command is logged and the
    sequence carries on, and the run ends by re-resolving whatever PHP is
    actually active.

    ``try_begin`` and the ``run_*`` methods are split so a caller on the
    presentation thread can claim the gate before handing the run to a
    worker. The one-call variants (``switch_to``, ``force_recover``, ...)
    do both.
    """

    def __init__(self, paths: config.EnvironmentPaths, gateway: CommandGateway,
                 registry: PhpRegistry, on_state_changed: Optional[StateListener] = None):
        self.paths = paths
        self.gateway = gateway
        self.registry = registry
        self.on_state_changed = on_state_changed
        self._gate = threading.Lock()
        self._state = SwitchState()

    @property
    def state(self) -> SwitchState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state.busy

    # --- Gate ---
    def try_begin(self, target_version: Optional[str] = None) -> bool:
        if not self._gate.acquire(blocking=False):
            logger.info(f"ORCHESTRATOR: Busy, dropping request (target: {target_version or 'n/a'}).")
            return False
        self._set_state(SwitchState(True, target_version, self._state.last_active_version))
        return True

    def _finish(self, confirmed_version: Optional[str]) -> None:
        last_active = confirmed_version or self._state.last_active_version
        self._set_state(SwitchState(False, None, last_active))
        self._gate.release()

    def _abandon(self) -> None:
        """Releases a claimed gate for a run that is refused before it starts."""
        if self.busy:
            self._finish(None)

    def _set_state(self, state: SwitchState) -> None:
        self._state = state
        if self.on_state_changed is not None:
            self.on_state_changed(state)

    def _execute(self, operation: str, body: Body, target_version: Optional[str] = None,
                 confirm: Callable[[PhpInstallation], bool] = lambda installation: installation.valid
                 ) -> OrchestrationResult:
        """Runs ``body`` while holding the gate (claimed by ``try_begin``) and always releases it."""
        if not self.busy:
            raise RuntimeError(f"{operation} started without claiming the orchestrator gate")

        logger.info(f"ORCHESTRATOR: Starting '{operation}' (target: {target_version or 'n/a'}).")
        confirmed_version: Optional[str] = None
        try:
            failed_steps, installation = body()
        except CommandSpawnError as e:
            logger.error(f"ORCHESTRATOR: '{operation}' aborted: {e}", exc_info=True)
            self._finish(None)
            return OrchestrationResult(operation, True, None, target_version, aborted=True, error=str(e))
        except BaseException:
            self._finish(None)
            raise

        if installation is not None and confirm(installation):
            confirmed_version = installation.version
        self._finish(confirmed_version)
        logger.info(
            f"ORCHESTRATOR: Finished '{operation}'. Active: "
            f"{installation.version if installation and installation.valid else 'unknown'}, "
            f"failed steps: {len(failed_steps)}"
        )
        return OrchestrationResult(operation, True, installation, target_version, tuple(failed_steps))

    def _run_steps(self, steps: Sequence[CommandStep]) -> List[str]:
        failed: List[str] = []
        for step in steps:
            result = self.gateway.run(step.command, privileged=step.privileged)
            if not result.ok:
                logger.warning(f"ORCHESTRATOR: Step '{step.description}' exited with {result.exit_code}, continuing.")
                failed.append(step.description)
        return failed

    # --- Switch ---
    def run_switch(self, version: str) -> OrchestrationResult:
        if not version:
            self._abandon()
            raise ValueError("No PHP version given to switch to.")

        def body():
            before = self.registry.resolve_active()
            logger.debug(f"ORCHESTRATOR: Switching from {before.version or 'unknown'} to {version}.")
            failed = self._run_steps(brew_manager.use_version_steps(self.paths, version))
            return failed, self.registry.resolve_active()

        return self._execute("switch", body, version,
                             confirm=lambda installation: installation.valid and installation.version == version)

    def switch_to(self, version: str) -> OrchestrationResult:
        if not self.try_begin(version):
            return OrchestrationResult.rejected("switch", version)
        return self.run_switch(version)

    # --- Force recover ("fix my PHP") ---
    def run_force_recover(self) -> OrchestrationResult:
        def body():
            versions = self.registry.discover_versions()
            steps = brew_manager.force_recover_steps(self.paths, versions, versions.alias)
            failed = self._run_steps(steps)
            return failed, self.registry.resolve_active()

        return self._execute("force_recover", body)

    def force_recover(self) -> OrchestrationResult:
        if not self.try_begin():
            return OrchestrationResult.rejected("force_recover")
        return self.run_force_recover()

    # --- Service restarts ---
    def run_restart(self, service_id: str) -> OrchestrationResult:
        def body():
            self.registry.resolve_alias_version()
            active = self.registry.resolve_active()
            if service_id == "all":
                steps = brew_manager.restart_all_steps(self.paths, active.formula)
            else:
                service = config.SERVICES[service_id]
                formula = active.formula if service_id == "php" else service.formula
                steps = brew_manager.restart_service_steps(self.paths, service, formula)
            failed = self._run_steps(steps)
            return failed, self.registry.resolve_active()

        if service_id != "all" and service_id not in config.SERVICES:
            self._abandon()
            raise KeyError(f"Unknown service '{service_id}'")
        return self._execute(f"restart_{service_id}", body)

    def restart(self, service_id: str) -> OrchestrationResult:
        if not self.try_begin():
            return OrchestrationResult.rejected(f"restart_{service_id}")
        return self.run_restart(service_id)

    # --- Extensions ---
    def run_toggle_extension(self, extension: PhpExtension) -> OrchestrationResult:
        def body():
            ok, message = toggle_extension(extension)
            failed = [] if ok else [message]
            return failed, self.registry.resolve_active()

        return self._execute("toggle_extension", body)

    def toggle_extension(self, extension: PhpExtension) -> OrchestrationResult:
        if not self.try_begin():
            return OrchestrationResult.rejected("toggle_extension")
        return self.run_toggle_extension(extension)

    # --- Refresh ---
    def periodic_refresh(self) -> PhpInstallation:
        """Re-resolves the active installation without taking the gate."""
        return self.registry.resolve_active()

    # --- phpinfo() report ---
    def run_php_info(self) -> Tuple[bool, str]:
        """Writes the phpinfo() report under a claimed gate. Returns (ok, report path or error)."""
        if not self.busy:
            raise RuntimeError("php_info started without claiming the orchestrator gate")
        try:
            return write_php_info_report(self.paths, self.gateway)
        except CommandSpawnError as e:
            logger.error(f"ORCHESTRATOR: phpinfo() report aborted: {e}")
            return False, str(e)
        finally:
            self._finish(None)

    def php_info(self) -> Tuple[bool, str]:
        if not self.try_begin():
            return False, "Another operation is in progress."
        return self.run_php_info()
