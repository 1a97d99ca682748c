"""
Tests for the bundled policy modules and the default configuration.
"""

from pathlib import Path

import pytest

from policy_engine.config_loader import ModuleReference, load_framework_config
from policy_engine.framework import AuthorizationFramework
from policy_engine.loader import ModuleLoader
from policy_engine.models import Capability, RequestContext

ROOT = Path(__file__).parent.parent
POLICY_DIR = ROOT / "policies"
DEFAULT_CONFIG = ROOT / "config" / "default.yaml"


def _load(name, **settings):
    result = ModuleLoader(str(POLICY_DIR)).load(ModuleReference(key="0", name=name, settings=settings))
    assert result.ok, result.error
    return result.module


def _context(user_id="alice", **principal):
    return RequestContext(user_id=user_id, principal=principal)


class TestUserWhitelist:
    """Test the user_whitelist module."""

    def test_listed_users_allowed(self):
        """Test that only listed users pass, for every scope."""
        module = _load("user_whitelist", users=["alice"])

        assert module.is_allowed(_context("alice"))
        assert module.is_project_allowed(_context("alice"), "kernel")
        assert not module.is_group_allowed(_context("bob"), "os")

    def test_users_required(self):
        """Test that the users setting is mandatory."""
        result = ModuleLoader(str(POLICY_DIR)).load(ModuleReference(key="0", name="user_whitelist"))

        assert not result.ok
        assert "users" in result.error

    def test_users_must_be_a_list(self):
        """Test that a scalar users setting fails load()."""
        result = ModuleLoader(str(POLICY_DIR)).load(
            ModuleReference(key="0", name="user_whitelist", settings={"users": "alice"})
        )

        assert not result.ok


class TestDisabledUsers:
    """Test the disabled_users module."""

    def test_listed_users_denied(self):
        module = _load("disabled_users", users=["mallory"])

        assert not module.is_allowed(_context("mallory"))
        assert not module.is_project_allowed(_context("mallory"), "kernel")
        assert module.is_group_allowed(_context("alice"), "os")

    def test_empty_list(self):
        module = _load("disabled_users", users=None)

        assert module.is_allowed(_context("anyone"))


class TestProjectMembership:
    """Test the project_membership module."""

    def test_capabilities(self):
        """Test that only project checks are answered."""
        assert _load("project_membership").capabilities == frozenset({Capability.PROJECT})

    def test_principal_attribute(self):
        """Test membership from the principal's attributes."""
        module = _load("project_membership", attribute="repos")

        assert module.is_project_allowed(_context(repos=["kernel"]), "kernel")
        assert not module.is_project_allowed(_context(projects=["kernel"]), "kernel")

    def test_configured_members(self):
        """Test membership from the settings."""
        module = _load("project_membership", members={"secret": ["alice"]})

        assert module.is_project_allowed(_context("alice"), "secret")
        assert not module.is_project_allowed(_context("bob"), "secret")

    def test_members_must_be_mapping(self):
        result = ModuleLoader(str(POLICY_DIR)).load(
            ModuleReference(key="0", name="project_membership", settings={"members": ["alice"]})
        )

        assert not result.ok


class TestGroupMembership:
    """Test the group_membership module."""

    def test_group_attribute(self):
        module = _load("group_membership")

        assert module.capabilities == frozenset({Capability.GROUP})
        assert module.is_group_allowed(_context(groups=["os"]), "os")
        assert not module.is_group_allowed(_context(groups=["os"]), "tools")
        assert not module.is_group_allowed(_context(), "os")


@pytest.fixture
def default_framework():
    """Framework running the shipped default configuration, without watching."""
    config = load_framework_config(str(DEFAULT_CONFIG)).model_copy(update={"watchdog": False})
    framework = AuthorizationFramework(config)
    framework.start()
    yield framework
    framework.stop()


class TestDefaultConfiguration:
    """Test the shipped configuration end to end."""

    def test_default_stack_builds(self, default_framework):
        """Test that every bundled module loads."""
        assert default_framework.stack.entry_names == [
            "disabled_users",
            "user_whitelist",
            "project_membership",
            "group_membership",
        ]

    def test_member_access(self, default_framework):
        """Test project and group access for a regular user."""
        alice = _context("alice", projects=["kernel"], groups=["os"])

        assert default_framework.authorize(alice)
        assert default_framework.filter_projects(alice, ["kernel", "secret"]) == ["kernel"]
        assert default_framework.filter_groups(alice, ["os", "tools"]) == ["os"]

    def test_admin_bypass(self, default_framework):
        """Test that the whitelisted admin short-circuits the membership checks."""
        admin = _context("admin")

        assert default_framework.authorize_project(admin, "secret")
        assert default_framework.decide(admin, group="tools").decided_by == "user_whitelist"
