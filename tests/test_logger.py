"""Tests for actuator.utils.logger."""

import logging
import logging.handlers

import pytest

from actuator.utils import get_file_logging_status, get_logger, setup_logger
from actuator.utils.logger import ROOT_LOGGER_NAME, _get_log_level


@pytest.fixture
def package_logger():
    """Restore the package logger after a test reconfigures it."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    handlers, level, propagate = saved
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


class TestGetLogger:

    def test_names_are_namespaced(self):
        assert get_logger('session').name == 'actuator.session'
        assert get_logger('actuator.core.backoff').name == 'actuator.core.backoff'
        assert get_logger().name == 'actuator'

    def test_log_level_names(self):
        assert _get_log_level('debug') == logging.DEBUG
        assert _get_log_level('WARNING') == logging.WARNING
        assert _get_log_level('chatty', logging.ERROR) == logging.ERROR


class TestSetupLogger:

    def test_console_only(self, package_logger):
        logger = setup_logger(console_level_name='WARNING')

        assert logger is package_logger
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert not get_file_logging_status()['file_logging_enabled']

    def test_file_logging(self, package_logger, tmp_path):
        log_file = tmp_path / 'logs' / 'actuator.log'

        setup_logger(log_file_path=str(log_file), max_bytes=1024, backup_count=2)
        get_logger('test').info("hello file")
        for handler in package_logger.handlers:
            handler.flush()

        status = get_file_logging_status()
        assert status['file_logging_enabled']
        [entry] = status['log_files']
        assert entry['path'] == str(log_file)
        assert entry['max_bytes'] == 1024
        assert entry['backup_count'] == 2
        assert 'hello file' in log_file.read_text(encoding='utf-8')

    def test_reconfigure_replaces_handlers(self, package_logger, tmp_path):
        setup_logger(log_file_path=str(tmp_path / 'a.log'))
        setup_logger()

        assert len(package_logger.handlers) == 1
        assert not get_file_logging_status()['file_logging_enabled']
