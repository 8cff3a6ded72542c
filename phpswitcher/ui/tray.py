import logging
from pathlib import Path
from typing import Optional

from PySide6.QtCore import QObject, QSettings, Qt, QUrl, Signal
from PySide6.QtGui import QAction, QColor, QDesktopServices, QFont, QGuiApplication, QIcon, QPainter, QPalette, QPixmap
from PySide6.QtWidgets import QMenu, QMessageBox, QSystemTrayIcon

from ..core import config
from ..core.environment import EnvironmentCheckResult
from ..managers.php_manager import InstalledVersionSet, PhpInstallation
from .strings import tr

logger = logging.getLogger(__name__)

DYNAMIC_ICON_SETTING = "display/dynamic_icon"


def is_dynamic_icon_enabled() -> bool:
    return bool(QSettings().value(DYNAMIC_ICON_SETTING, True, type=bool))


def icon_text_color() -> QColor:
    return QGuiApplication.palette().color(QPalette.ColorRole.WindowText)


def text_icon(text: str, color: Optional[QColor] = None, size: int = 64) -> QIcon:
    """Renders a short version string into a square tray icon, in the palette text color by default."""
    pixmap = QPixmap(size, size)
    pixmap.fill(Qt.GlobalColor.transparent)
    painter = QPainter(pixmap)
    font = QFont()
    font.setBold(True)
    font.setPixelSize(int(size * 0.5))
    painter.setFont(font)
    painter.setPen(color if color is not None else icon_text_color())
    painter.drawText(pixmap.rect(), Qt.AlignmentFlag.AlignCenter, text)
    painter.end()
    return QIcon(pixmap)


class TrayPresenter(QObject):
    """System tray rendering of the controller's state."""
    switchRequested = Signal(str)
    refreshRequested = Signal()
    restartRequested = Signal(str)
    forceRecoverRequested = Signal()
    phpInfoRequested = Signal()
    openConfigRequested = Signal()
    openValetConfigRequested = Signal()
    extensionToggled = Signal(object)
    quitRequested = Signal()

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.tray_icon = QSystemTrayIcon(self)
        self.static_icon = QIcon.fromTheme("application-x-php", QIcon.fromTheme("applications-development"))
        self.tray_icon.setIcon(self.static_icon)
        self.tray_icon.setToolTip(config.APP_NAME)
        self.menu = QMenu()
        self.tray_icon.setContextMenu(self.menu)
        self.tray_icon.show()

    def bind(self, controller) -> None:
        self.switchRequested.connect(controller.request_switch)
        self.refreshRequested.connect(lambda: controller.request_refresh(include_versions=True))
        self.restartRequested.connect(controller.request_restart)
        self.forceRecoverRequested.connect(controller.request_force_recover)
        self.phpInfoRequested.connect(controller.request_php_info)
        self.openConfigRequested.connect(controller.open_config_folder)
        self.openValetConfigRequested.connect(controller.open_valet_config_folder)
        self.extensionToggled.connect(controller.request_toggle_extension)

    # --- Presenter interface ---
    def render_state(self, installation: Optional[PhpInstallation], busy: bool,
                     versions: Optional[InstalledVersionSet]) -> None:
        self._render_icon(installation, busy)
        self._render_menu(installation, busy, versions)

    def notify(self, title: str, body: str) -> None:
        if QSystemTrayIcon.supportsMessages():
            self.tray_icon.showMessage(title, body, QSystemTrayIcon.MessageIcon.Information, 5000)
        else:
            logger.info(f"TRAY: {title}: {body}")

    def ask_retry(self, failure: EnvironmentCheckResult) -> bool:
        box = QMessageBox()
        box.setIcon(QMessageBox.Icon.Critical)
        box.setWindowTitle(config.APP_NAME)
        box.setText(tr("alert.cannot_start.title"))
        box.setInformativeText(tr("alert.cannot_start.info", diagnostic=failure.diagnostic, hint=failure.hint))
        close_button = box.addButton(QMessageBox.StandardButton.Close)
        box.addButton(QMessageBox.StandardButton.Retry)
        box.exec()
        return box.clickedButton() is not close_button

    def open_path(self, path: Path) -> None:
        logger.info(f"TRAY: Opening {path}")
        QDesktopServices.openUrl(QUrl.fromLocalFile(str(path)))

    # --- Rendering ---
    def _render_icon(self, installation: Optional[PhpInstallation], busy: bool) -> None:
        if busy or installation is None or not installation.valid or not is_dynamic_icon_enabled():
            self.tray_icon.setIcon(self.static_icon)
        else:
            self.tray_icon.setIcon(text_icon(installation.version))
        if installation is not None and installation.valid:
            self.tray_icon.setToolTip(f"{config.APP_NAME}: PHP {installation.full_version}")

    def _add_action(self, text: str, slot=None, enabled: bool = True) -> QAction:
        action = self.menu.addAction(text)
        action.setEnabled(enabled)
        if slot is not None:
            action.triggered.connect(slot)
        return action

    def _render_menu(self, installation: Optional[PhpInstallation], busy: bool,
                     versions: Optional[InstalledVersionSet]) -> None:
        self.menu.clear()

        if busy:
            self._add_action(tr("mi_busy"), enabled=False)
        elif installation is None or not installation.valid:
            self._add_action(tr("mi_unsure"), enabled=False)
        else:
            self._add_action(tr("mi_php_version", version=installation.full_version), enabled=False)

        self.menu.addSeparator()
        for version in (versions or ()):
            action = self._add_action(tr("mi_switch_to", version=version),
                                      lambda checked=False, v=version: self.switchRequested.emit(v), enabled=not busy)
            action.setCheckable(True)
            action.setChecked(installation is not None and installation.valid and installation.version == version)

        self.menu.addSeparator()
        self._add_action(tr("mi_restart_php"), lambda checked=False: self.restartRequested.emit("php"), enabled=not busy)
        self._add_action(tr("mi_restart_nginx"), lambda checked=False: self.restartRequested.emit("nginx"), enabled=not busy)
        self._add_action(tr("mi_restart_dnsmasq"), lambda checked=False: self.restartRequested.emit("dnsmasq"), enabled=not busy)
        self._add_action(tr("mi_restart_all"), lambda checked=False: self.restartRequested.emit("all"), enabled=not busy)
        self._add_action(tr("mi_force_recover"), self.forceRecoverRequested, enabled=not busy)

        self.menu.addSeparator()
        if installation is not None and installation.valid:
            self._add_action(tr("mi_limits", memory=installation.memory_limit or "?",
                                upload=installation.upload_max_filesize or "?",
                                post=installation.post_max_size or "?"), enabled=False)
            if installation.extensions:
                extensions_menu = self.menu.addMenu(tr("mi_extensions"))
                for extension in installation.extensions:
                    action = extensions_menu.addAction(extension.name)
                    action.setCheckable(True)
                    action.setChecked(extension.enabled)
                    action.setEnabled(not busy)
                    action.triggered.connect(lambda checked=False, ext=extension: self.extensionToggled.emit(ext))
        self._add_action(tr("mi_phpinfo"), self.phpInfoRequested, enabled=not busy)
        self._add_action(tr("mi_open_config"), self.openConfigRequested)
        self._add_action(tr("mi_open_valet_config"), self.openValetConfigRequested)

        self.menu.addSeparator()
        self._add_action(tr("mi_reload"), self.refreshRequested, enabled=not busy)
        self._add_action(tr("mi_quit"), self.quitRequested)
