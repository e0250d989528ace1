import io
import logging

import pytest

from awsiot_mqtt.logging_config import LoggingManager, ROOT_LOGGER, get_logger, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    setup_logging('WARNING')
    root = logging.getLogger(ROOT_LOGGER)
    root.removeHandler(LoggingManager._handler)
    LoggingManager._handler = None
    root.setLevel(logging.NOTSET)
    get_logger('connection').setLevel(logging.NOTSET)


def test_loggers_hang_off_package_logger():
    assert get_logger('connection').name == 'awsiot_mqtt.connection'


def test_setup_writes_to_stream():
    stream = io.StringIO()
    setup_logging('INFO', stream=stream)
    get_logger('client').info('hello')
    get_logger('client').debug('hidden')
    output = stream.getvalue()
    assert 'INFO [awsiot_mqtt.client]' in output
    assert 'hello' in output
    assert 'hidden' not in output


def test_setup_again_replaces_handler():
    first, second = io.StringIO(), io.StringIO()
    setup_logging('INFO', stream=first)
    setup_logging('INFO', stream=second)
    get_logger('client').warning('once')
    assert first.getvalue() == ''
    assert second.getvalue().count('once') == 1


def test_module_levels():
    stream = io.StringIO()
    setup_logging('WARNING', module_levels={'connection': 'DEBUG'}, stream=stream)
    get_logger('connection').debug('verbose')
    get_logger('client').info('quiet')
    assert 'verbose' in stream.getvalue()
    assert 'quiet' not in stream.getvalue()


def test_none_disables_output():
    setup_logging('NONE')
    assert not get_logger('client').isEnabledFor(logging.CRITICAL)


def test_colored_output_keeps_record_intact():
    stream = io.StringIO()
    setup_logging('INFO', use_color=True, stream=stream)
    record_levels = []

    class Capture(logging.Handler):
        def emit(self, record):
            record_levels.append(record.levelname)

    capture = Capture()
    logging.getLogger(ROOT_LOGGER).addHandler(capture)
    try:
        get_logger('client').info('colored')
    finally:
        logging.getLogger(ROOT_LOGGER).removeHandler(capture)
    assert '\033[32m' in stream.getvalue()
    assert record_levels == ['INFO']
