"""Shared pytest fixtures."""

import logging

import pytest

from tests.helpers import FakeClient, FakeTagClient


@pytest.fixture
def fake_client():
    """An empty FakeClient; tests fill `torrents` and `free_space` as needed."""
    return FakeClient()


@pytest.fixture
def fake_tag_client():
    return FakeTagClient()


@pytest.fixture(autouse=True)
def reset_root_logger():
    """setup_logger() replaces root handlers; restore them after each test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
