import logging
from pathlib import Path
from typing import List, Optional

from PySide6.QtCore import QFileSystemWatcher, QObject, QTimer, Signal, Slot

from . import config
from ..managers.php_manager import PhpInstallation

logger = logging.getLogger(__name__)


class PhpConfigWatcher(QObject):
    """
    Watches the active installation's php.ini and its conf.d directory.

    Re-armed on every installation change via ``watch()``; bursts of change
    events are collapsed into one ``configChanged`` emission.
    """
    configChanged = Signal()

    def __init__(self, parent: Optional[QObject] = None, debounce_ms: int = config.WATCHER_DEBOUNCE_MS):
        super().__init__(parent)
        self._watcher = QFileSystemWatcher(self)
        self._watcher.fileChanged.connect(self._on_path_changed)
        self._watcher.directoryChanged.connect(self._on_path_changed)
        self._debounce = QTimer(self)
        self._debounce.setSingleShot(True)
        self._debounce.setInterval(debounce_ms)
        self._debounce.timeout.connect(self.configChanged.emit)
        self._watched_version: Optional[str] = None

    @property
    def watched_paths(self) -> List[str]:
        return list(self._watcher.files()) + list(self._watcher.directories())

    def watch(self, installation: Optional[PhpInstallation]) -> None:
        version = installation.version if installation is not None and installation.valid else None
        if version == self._watched_version and self.watched_paths:
            return
        self.clear()
        self._watched_version = version
        if version is None:
            logger.debug("WATCHER: No valid installation, nothing to watch.")
            return

        candidates = [p for p in (installation.ini_path, installation.conf_d_path) if p is not None]
        existing = [str(p) for p in candidates if Path(p).exists()]
        if existing:
            failed = self._watcher.addPaths(existing)
            if failed:
                logger.warning(f"WATCHER: Could not watch: {', '.join(failed)}")
        logger.info(f"WATCHER: Watching config for PHP {version}: {', '.join(existing) or 'nothing found'}")

    def clear(self) -> None:
        paths = self.watched_paths
        if paths:
            self._watcher.removePaths(paths)
        self._watched_version = None

    @Slot(str)
    def _on_path_changed(self, path: str) -> None:
        logger.debug(f"WATCHER: Change detected in {path}")
        # Editors often replace files, which drops them from the watch list.
        if Path(path).exists() and path not in self.watched_paths:
            self._watcher.addPath(path)
        self._debounce.start()
