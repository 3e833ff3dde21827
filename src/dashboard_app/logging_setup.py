# src/dashboard_app/logging_setup.py

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

from token_lifecycle.failure_logger import configure_failure_logger
from token_lifecycle.utils.paths import get_logs_dir

_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# Ensure the debug handler ONLY gets DEBUG messages from the token library
class TokenLifecycleDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith(
            "token_lifecycle"
        )


def configure_logging(
    logs_dir: Optional[Union[Path, str]] = None, console: bool = True
) -> Path:
    """
    Install console and file handlers on the root logger.

    - colored console output, INFO and above
    - dashboard.log with INFO and above
    - token_lifecycle_debug.log with DEBUG records of the token library only
    - token_failures.log (JSON) through the failure logger

    Returns:
        The logs directory in use
    """
    log_dir = Path(logs_dir) if logs_dir else get_logs_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    configure_failure_logger(log_dir)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Re-running must not stack duplicate handlers
    for handler in list(root_logger.handlers):
        if getattr(handler, "_dashboard_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    info_file_handler = logging.FileHandler(log_dir / "dashboard.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))

    debug_file_handler = logging.FileHandler(
        log_dir / "token_lifecycle_debug.log", encoding="utf-8"
    )
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    debug_file_handler.addFilter(TokenLifecycleDebugFilter())

    handlers = [info_file_handler, debug_file_handler]

    if console:
        console_handler = colorlog.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s%(message)s",
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        )
        handlers.append(console_handler)

    for handler in handlers:
        handler._dashboard_handler = True
        root_logger.addHandler(handler)

    # Silence other noisy loggers by setting their level higher than root
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return log_dir
