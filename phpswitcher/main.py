import sys
import logging
import logging.handlers
from typing import Optional

from phpswitcher.core import config


# --- Custom Log Formatter for Colors ---
class ColorLogFormatter(logging.Formatter):
    """Adds ANSI color codes to log messages based on level for console output."""

    GREY = "\x1b[38;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    BASE_FORMAT = '%(asctime)s [%(levelname)-7s] %(name)s: %(message)s'
    DATE_FORMAT = '%H:%M:%S'

    FORMATS = {
        logging.DEBUG: GREY + BASE_FORMAT + RESET,
        logging.INFO: BASE_FORMAT,
        logging.WARNING: YELLOW + BASE_FORMAT + RESET,
        logging.ERROR: RED + BASE_FORMAT + RESET,
        logging.CRITICAL: BOLD_RED + BASE_FORMAT + RESET
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.BASE_FORMAT)
        formatter = logging.Formatter(log_fmt, datefmt=self.DATE_FORMAT)
        return formatter.format(record)


def configure_logging(console_level: int = logging.INFO) -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(ColorLogFormatter())
    root_logger.addHandler(console_handler)

    if config.ensure_dir(config.LOG_DIR):
        log_file_path = config.LOG_DIR / 'phpswitcher.log'
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(ColorLogFormatter.BASE_FORMAT,
                                                        datefmt=ColorLogFormatter.DATE_FORMAT))
            file_handler.setLevel(logging.DEBUG)
            root_logger.addHandler(file_handler)
            logging.info(f"MAIN: File logging initialized at: {log_file_path}")
        except OSError as log_e:
            logging.error(f"MAIN: Failed to set up file logging at {log_file_path}: {log_e}", exc_info=True)
    else:
        logging.warning(f"MAIN: LOG_DIR '{config.LOG_DIR}' could not be ensured. Skipping file logging.")


logger = logging.getLogger(__name__)


def main() -> int:
    configure_logging()

    try:
        from PySide6.QtWidgets import QApplication, QSystemTrayIcon
    except ImportError as e:
        logger.critical(f"MAIN: Failed to import PySide6: {e}", exc_info=True)
        return 1

    from phpswitcher.ui.controller import StatusController
    from phpswitcher.ui.tray import TrayPresenter

    QApplication.setQuitOnLastWindowClosed(False)
    app = QApplication(sys.argv)
    app.setOrganizationName("PHP Switcher")
    app.setApplicationName(config.APP_NAME)

    if not QSystemTrayIcon.isSystemTrayAvailable():
        logger.critical("MAIN: System tray not available. Use the 'phpswitcher' command line tool instead.")
        return 1

    presenter = TrayPresenter()
    controller: Optional[StatusController] = None
    try:
        controller = StatusController(presenter)
    except Exception as e:
        logger.critical(f"MAIN: Error during controller creation: {e}", exc_info=True)
        return 1

    presenter.bind(controller)
    presenter.quitRequested.connect(app.quit)
    app.aboutToQuit.connect(controller.shutdown)

    controller.startup()
    logger.info("MAIN: Starting Qt event loop...")
    exit_code = app.exec()
    logger.info(f"MAIN: Application exiting with code {exit_code}.")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
