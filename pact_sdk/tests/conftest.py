"""Pytest fixtures for pact_sdk tests."""

import logging
import os
import tempfile
from pathlib import Path

import pytest

from pact_sdk.adapter import FilePactAdapter
from pact_sdk.context import clear_context
from pact_sdk.pact import Pact
from pact_sdk.record import PactRecord
from pact_sdk.session import unpatch_requests


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def file_adapter(temp_dir):
    """Create a FilePactAdapter with a temporary directory."""
    return FilePactAdapter(temp_dir)


@pytest.fixture
def get_record():
    """A recorded GET of a managed object."""
    return PactRecord(
        request={"method": "GET", "url": "/inventory/managedObjects/1"},
        response={
            "status": 200,
            "statusText": "OK",
            "headers": {"content-type": "application/json"},
            "body": {"id": "1", "name": "device"},
        },
    )


@pytest.fixture
def post_record():
    """A recorded POST creating a managed object."""
    return PactRecord(
        request={
            "method": "POST",
            "url": "/inventory/managedObjects",
            "headers": {"content-type": "application/json"},
            "body": {"name": "device"},
        },
        response={
            "status": 201,
            "statusText": "Created",
            "headers": {"content-type": "application/json"},
            "body": {"id": "42", "name": "device"},
        },
    )


@pytest.fixture
def sample_pact(get_record, post_record):
    """A pact with a POST followed by a GET."""
    return Pact(
        "inventory__create_device",
        {"baseUrl": "https://tenant.example.com", "tenant": "t100"},
        [post_record, get_record],
    )


@pytest.fixture(autouse=True)
def reset_env():
    """Reset environment variables and context after each test."""
    original_env = os.environ.copy()
    package_logger = logging.getLogger("pact_sdk")
    original_level = package_logger.level
    yield
    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
    package_logger.setLevel(original_level)
    clear_context()
    unpatch_requests()
