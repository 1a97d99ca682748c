"""
Pytest configuration and fixtures for the authorization framework tests.

Provides a temporary plugin directory and helpers to drop policy module
sources into it.
"""

import tempfile
import textwrap
import time
from pathlib import Path
from typing import Callable, Generator

import pytest

# Policy module whose answer comes from its settings; counts unload() calls.
CONSTANT_PLUGIN = '''
from policy_engine.interfaces import PolicyModule


class ConstantPolicy(PolicyModule):
    def __init__(self):
        super().__init__()
        self.unload_calls = 0

    def load(self, settings):
        self.result = settings.get("result", True)
        return super().load(settings)

    def is_allowed(self, context):
        return self.result

    def is_project_allowed(self, context, project):
        return self.result

    def is_group_allowed(self, context, group):
        return self.result

    def unload(self):
        self.unload_calls += 1
'''


@pytest.fixture
def plugin_dir() -> Generator[Path, None, None]:
    """Create a temporary plugin directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_plugin(plugin_dir: Path) -> Callable[..., Path]:
    """Return a function writing a policy module source into the plugin directory."""

    def write(name: str, source: str = CONSTANT_PLUGIN, package: bool = False) -> Path:
        if package:
            path = plugin_dir / name / "__init__.py"
            path.parent.mkdir(parents=True, exist_ok=True)
        else:
            path = plugin_dir / f"{name}.py"
        path.write_text(textwrap.dedent(source))
        return path

    return write


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Return a function polling a condition until it holds or times out."""

    def wait(condition: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if condition():
                return True
            time.sleep(interval)
        return condition()

    return wait
