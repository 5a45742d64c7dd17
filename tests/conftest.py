"""Shared fixtures."""

import pytest

from serial_writer.config import AppConfig
from serial_writer.storage import InMemoryStore

from fakes import FakeBackend, make_client, make_project


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    return make_client(backend)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def project():
    return make_project()


@pytest.fixture
def app_config():
    return AppConfig()
