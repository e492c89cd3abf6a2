import logging

import pytest
from fastapi.testclient import TestClient

from fileshare.config import Config, ServerConfig, UploaderConfig
from fileshare.main import create_app


@pytest.fixture
def logger():
    return logging.getLogger("fileshare.tests")


@pytest.fixture
def storage_dir(tmp_path):
    """Storage directory inside the test's temporary directory (not created yet)."""
    return tmp_path / "storage"


@pytest.fixture
def make_client(storage_dir, logger):
    """Build a TestClient for an app with the given uploader limits."""

    def _make_client(max_upload_size_mb=8, max_form_mem_size_mb=1):
        config = Config(
            server=ServerConfig(),
            uploader=UploaderConfig(
                storage_dir=storage_dir,
                max_upload_size_mb=max_upload_size_mb,
                max_form_mem_size_mb=max_form_mem_size_mb,
            ),
        )
        return TestClient(create_app(config, logger))

    return _make_client


@pytest.fixture
def client(make_client):
    return make_client()