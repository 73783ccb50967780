"""
Logger setup module for the actuator.
Provides functions to configure logging based on external settings.
"""
import os
import sys
import logging
import logging.handlers
from typing import Optional, Dict, Any

ROOT_LOGGER_NAME = 'actuator'
DEFAULT_CONSOLE_LEVEL_NAME = 'INFO'
DEFAULT_FILE_LEVEL_NAME = 'DEBUG'
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _get_log_level(level_name: str, default_level: int = logging.INFO) -> int:
    """
    Convert log level string to logging level constant.

    :param level_name: Name of the log level (e.g., 'DEBUG')
    :type level_name: str
    :param default_level: Default level to use if level_name is invalid
    :type default_level: int
    :return: The corresponding logging level constant
    :rtype: int
    """
    level = logging.getLevelName(str(level_name).upper())
    if isinstance(level, int):
        return level
    logging.warning(f"Invalid log level name '{level_name}'. Using default level {logging.getLevelName(default_level)}.")
    return default_level


def _ensure_log_directory(log_file_path: str) -> bool:
    """
    Create the directory holding the log file if needed and check it is writable.

    :param log_file_path: Path to the log file
    :type log_file_path: str
    :return: True if the directory can receive the log file
    :rtype: bool
    """
    log_dir = os.path.dirname(os.path.abspath(log_file_path))
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        print(f"Cannot create log directory {log_dir}: {e}", file=sys.stderr)
        return False
    return os.access(log_dir, os.W_OK)


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    log_format: str = DEFAULT_LOG_FORMAT,
    console_level_name: str = DEFAULT_CONSOLE_LEVEL_NAME,
    file_level_name: str = DEFAULT_FILE_LEVEL_NAME,
    log_file_path: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Configures the package logger with a console handler and an optional
    rotating file handler.

    Calling it again replaces the handlers installed by the previous call,
    so the CLI can reconfigure logging once the config file is read.

    :param name: The name for the logger
    :type name: str
    :param log_format: The format string for log messages
    :type log_format: str
    :param console_level_name: Logging level for console output
    :type console_level_name: str
    :param file_level_name: Logging level for file output
    :type file_level_name: str
    :param log_file_path: Path to the log file. If None, file logging is disabled
    :type log_file_path: Optional[str]
    :param max_bytes: Maximum size of the log file before rotation
    :type max_bytes: int
    :param backup_count: Number of backup log files to keep
    :type backup_count: int
    :return: The configured logger instance
    :rtype: logging.Logger
    """
    logger = logging.getLogger(name)
    console_level = _get_log_level(console_level_name, logging.INFO)
    file_level = _get_log_level(file_level_name, logging.DEBUG)
    logger.setLevel(min(console_level, file_level) if log_file_path else console_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file_path:
        if not _ensure_log_directory(log_file_path):
            logger.warning(f"Log directory for {log_file_path} is not writable. Logging to console only.")
            return logger
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
        except OSError as e:
            logger.error(f"Failed to set up file logging to {log_file_path}: {e}")
            return logger
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        logger.info(f"File logging enabled to: {log_file_path}")

    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger inside the package namespace.

    Handlers are only installed by :func:`setup_logger`; until then records
    propagate to the root logger like any library's.

    :param name: Dotted name below the package logger (e.g. 'session')
    :type name: str
    :return: The logger instance
    :rtype: logging.Logger
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + '.'):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def get_file_logging_status() -> Dict[str, Any]:
    """
    Report the rotating file handlers attached to the package logger.

    :return: Dictionary with information about file logging configuration
    :rtype: Dict[str, Any]
    """
    result: Dict[str, Any] = {"file_logging_enabled": False, "log_files": []}
    for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            result["file_logging_enabled"] = True
            result["log_files"].append({
                "path": handler.baseFilename,
                "level": logging.getLevelName(handler.level),
                "max_bytes": handler.maxBytes,
                "backup_count": handler.backupCount
            })
    return result
