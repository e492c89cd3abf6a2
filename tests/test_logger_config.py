import logging

import pytest

from fileshare.logger_config import LOG_PREFIX, setup_logger


@pytest.fixture
def logger_name(request):
    name = f"fileshare.tests.{request.node.name}"
    yield name
    logger = logging.getLogger(name)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)


def test_logs_to_file_and_stdout(tmp_path, logger_name, capsys):
    log_file = tmp_path / "logs" / "server.log"
    logger = setup_logger(name=logger_name, log_file=log_file)

    logger.info("starting server on :8090")
    for handler in logger.handlers:
        handler.flush()

    content = log_file.read_text()
    assert LOG_PREFIX in content
    assert "starting server on :8090" in content
    assert "starting server on :8090" in capsys.readouterr().out


def test_setup_is_idempotent(tmp_path, logger_name):
    log_file = tmp_path / "server.log"
    first = setup_logger(name=logger_name, log_file=log_file)
    second = setup_logger(name=logger_name, log_file=log_file)

    assert first is second
    assert len(second.handlers) == 2


def test_log_file_is_appended(tmp_path, logger_name):
    log_file = tmp_path / "server.log"
    log_file.write_text("previous run\n")

    logger = setup_logger(name=logger_name, log_file=log_file)
    logger.info("new run")
    for handler in logger.handlers:
        handler.flush()

    lines = log_file.read_text().splitlines()
    assert lines[0] == "previous run"
    assert "new run" in lines[-1]
