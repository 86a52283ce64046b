"""Shared pytest fixtures for api_sessions tests."""

import os
import shutil
import tempfile
import time

import pytest

from api_sessions.config import SessionConfig
from api_sessions.session_service import SessionService


@pytest.fixture
def temp_dir():
    """Create a temporary directory standing in for the system temp dir."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def session_config(temp_dir):
    """Config rooted in the temporary directory, with random sweeps disabled."""
    return SessionConfig(temp_dir=temp_dir, gc_probability=0.0)


@pytest.fixture
def service(session_config):
    """Create a fresh SessionService writing to the temporary directory."""
    return SessionService(session_config)


@pytest.fixture
def forwarded_environ():
    """Request metadata as seen behind a proxy."""
    return {
        "HTTP_X_FORWARDED_FOR": "203.0.113.5, 10.0.0.1",
        "REMOTE_ADDR": "10.0.0.1",
    }


@pytest.fixture
def age_file():
    """Return a helper that sets a file's mtime to `seconds` in the past."""

    def _age(path, seconds):
        past = time.time() - seconds
        os.utime(path, (past, past))

    return _age
