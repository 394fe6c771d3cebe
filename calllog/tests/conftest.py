# calllog/tests/conftest.py
import io
import logging
import os

import pytest

from calllog.config import GlobalConfig
from calllog.invocation import InvocationLogger, set_default_invocation_logger
from calllog.logging import ROOT_LOGGER_NAME, configure_logging


@pytest.fixture
def log_stream():
    """Route the calllog logger tree into a buffer for the test."""
    buf = io.StringIO()
    configure_logging(level="DEBUG", stream=buf, color=False)
    yield buf
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for h in list(root.handlers):
        root.removeHandler(h)


@pytest.fixture
def make_invocation_logger():
    def _make(**fields):
        return InvocationLogger(GlobalConfig(**fields))

    return _make


@pytest.fixture
def default_invocation_logger():
    il = InvocationLogger(GlobalConfig())
    set_default_invocation_logger(il)
    yield il
    set_default_invocation_logger(None)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("CALLLOG_"):
            monkeypatch.delenv(name, raising=False)
