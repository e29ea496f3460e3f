# tests/conftest.py
"""Shared fixtures: scripted model backends and small datasets."""

import os
import tempfile

import pytest

# Keep test runs from writing into ~/.holysheets/logs.
os.environ.setdefault("HOLYSHEETS_LOG_DIR", tempfile.mkdtemp(prefix="holysheets-test-logs-"))

SALES_CSV = b"Date,Sales\n2024-01-01,100\n2024-01-02,250\n2024-01-03,150\n"


@pytest.fixture(autouse=True)
def _fresh_config():
    from holysheets.config import get_config

    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def sales_csv_bytes():
    return SALES_CSV


@pytest.fixture
def sales_csv(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_bytes(SALES_CSV)
    return path


@pytest.fixture
def loaded_sandbox(sales_csv_bytes):
    from holysheets.analyst.sandbox import SandboxSession

    sandbox = SandboxSession()
    sandbox.load_dataset(sales_csv_bytes, "sales.csv")
    return sandbox


@pytest.fixture
def scripted():
    """Factory for a backend that replays canned replies and records prompts.

    A reply that is an exception instance is raised instead of returned.
    """
    from holysheets.analyst.backends import ModelBackend

    class ScriptedBackend(ModelBackend):
        def __init__(self, replies, name="scripted", mode="remote"):
            self.replies = list(replies)
            self.prompts = []
            self.name = name
            self.mode = mode

        def generate(self, prompt):
            self.prompts.append(prompt)
            if not self.replies:
                raise AssertionError("ScriptedBackend ran out of replies")
            reply = self.replies.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            return reply

    return ScriptedBackend
