import logging
import json
from logging.handlers import RotatingFileHandler
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Union

from .error_handler import LifecycleError, PersistenceError, mask_credential
from .utils.paths import get_logs_dir


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logs."""

    def format(self, record):
        # The message is already a dict, so we just format it as a JSON string
        return json.dumps(record.msg)


# Module-level state for lazy initialization
_failure_logger: Optional[logging.Logger] = None
_configured_logs_dir: Optional[Path] = None


def configure_failure_logger(logs_dir: Optional[Union[Path, str]] = None) -> None:
    """
    Configure the failure logger to use a specific logs directory.

    Call this before first use to override the default location. If not
    called, the logger uses get_logs_dir() on first use.
    """
    global _configured_logs_dir, _failure_logger
    _configured_logs_dir = Path(logs_dir) if logs_dir else None
    # Reset logger so it gets reconfigured on next use
    _failure_logger = None


def _setup_failure_logger(logs_dir: Path) -> logging.Logger:
    """Sets up a dedicated JSON logger writing token lifecycle failures to a file."""
    logger = logging.getLogger("token_failure_logger")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # Clear existing handlers to prevent duplicates on re-setup
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    try:
        logs_dir.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            logs_dir / "token_failures.log",
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
            encoding="utf-8",
        )
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    except (OSError, PermissionError) as e:
        logging.warning(f"Cannot create token failure log file handler: {e}")
        logger.addHandler(logging.NullHandler())

    return logger


def get_failure_logger() -> logging.Logger:
    """Get the failure logger, initializing it lazily if needed."""
    global _failure_logger

    if _failure_logger is None:
        logs_dir = _configured_logs_dir if _configured_logs_dir else get_logs_dir()
        _failure_logger = _setup_failure_logger(logs_dir)

    return _failure_logger


# Main library logger for concise, propagated messages
main_lib_logger = logging.getLogger("token_lifecycle")


def log_lifecycle_failure(
    error: LifecycleError,
    store_name: str,
    subject_key: str,
    refresh_token: Optional[str] = None,
):
    """
    Logs a detailed failure record to token_failures.log and a concise summary
    to the main library logger.

    Token values are never written; the refresh token is masked.
    """
    error_chain = []
    visited = set()
    current_error: Optional[BaseException] = error
    while current_error is not None and len(error_chain) < 5:
        if id(current_error) in visited:
            break
        visited.add(id(current_error))
        error_chain.append(
            {
                "type": type(current_error).__name__,
                "message": str(current_error)[:2000],
            }
        )
        current_error = current_error.__cause__ or current_error.__context__

    detailed_log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "kind": error.kind,
        "store": store_name,
        "subject_key": subject_key,
        "refresh_token_ending": mask_credential(refresh_token),
        "retryable": error.retryable,
        "reauth_required": error.reauth_required,
        "provider_code": getattr(error, "provider_code", None),
        "status_code": getattr(error, "status_code", None),
        "error_message": error.message[:5000],
        "error_chain": error_chain if len(error_chain) > 1 else None,
    }

    summary_message = (
        f"Token lifecycle failure ({error.kind}) for {store_name}:{subject_key}. "
        f"See token_failures.log for details."
    )

    try:
        get_failure_logger().error(detailed_log_data)
    except OSError as e:
        logging.warning(f"Failed to write to token_failures.log: {e}")

    if isinstance(error, PersistenceError):
        # The next call will refresh again; this must be visible to operators
        main_lib_logger.error(summary_message)
    elif error.retryable:
        main_lib_logger.warning(summary_message)
    else:
        main_lib_logger.info(summary_message)
