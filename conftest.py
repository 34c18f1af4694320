"""Root conftest.py for the posqa monorepo.

Puts every package's ``src`` directory on ``sys.path``, registers the
project markers, and marks tests that do not talk to a real POS backend
with ``uses_mock``. A test counts as faked when it requests one of the
fake-backend fixtures of posqa-modules, or when its body builds an
``httpx.MockTransport`` or a ``unittest.mock`` double.
"""

from __future__ import annotations

import ast
import inspect
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


PROJECT_ROOT = Path(__file__).parent
for pkg_dir in PROJECT_ROOT.glob("posqa-*/src"):
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))

# Fixture of the in-process FakeBackend (posqa-modules/tests/conftest.py);
# the api and context fixtures there depend on it.
FAKE_BACKEND_FIXTURES = frozenset({"backend"})

# Callables that replace the HTTP transport or a collaborator
FAKE_CALLS = frozenset({"MockTransport", "Mock", "MagicMock", "AsyncMock", "patch"})


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "uses_mock: Test runs against a faked POS backend")
    config.addinivalue_line("markers", "integration: Integration test requiring a live POS backend")
    config.addinivalue_line("markers", "slow: Slow-running test")


def _calls_fake(source: str) -> bool:
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return False
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue
        func = node.func
        name = func.id if isinstance(func, ast.Name) else getattr(func, "attr", None)
        if name in FAKE_CALLS:
            return True
    return False


def _uses_fake_backend(item: Item) -> bool:
    if FAKE_BACKEND_FIXTURES & set(getattr(item, "fixturenames", ())):
        return True

    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        source = inspect.getsource(obj)
    except (OSError, TypeError):
        return False
    return _calls_fake(textwrap.dedent(source))


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Mark tests that run against a faked backend with ``uses_mock``."""
    for item in items:
        if not item.get_closest_marker("uses_mock") and _uses_fake_backend(item):
            item.add_marker(pytest.mark.uses_mock)
