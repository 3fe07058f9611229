"""Pytest configuration for notevault tests.

Puts the project root on sys.path (so ``tests.fakes`` and the flat
``storage``/``config`` packages import without installation) and provides
shared fixtures.
"""

import sys
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from tests.fakes.github import FakeGitHub  # noqa: E402


@pytest.fixture
def fake_github() -> FakeGitHub:
    """Fresh in-memory contents API with an initial commit on ``main``."""
    return FakeGitHub()


@pytest.fixture(autouse=True)
def _isolated_config_env(monkeypatch):
    # Keep developer settings out of the tests.
    for name in ("NOTEVAULT_CONFIG_DIR", "NOTEVAULT_STORAGE_MODE", "NOTEVAULT_GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
