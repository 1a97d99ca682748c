"""
Tests for core models and the policy module interface.
"""

import pytest
from pydantic import ValidationError

from policy_engine.interfaces import PolicyModule
from policy_engine.models import (
    Capability,
    ControlFlag,
    Decision,
    DecisionOutcome,
    ModuleState,
    ReloadResult,
    ReloadStatus,
    RequestContext,
    Scope,
)


class TestControlFlag:
    """Test ControlFlag enum."""

    def test_flag_values(self):
        """Test that all four control flags exist."""
        assert ControlFlag.REQUIRED == "REQUIRED"
        assert ControlFlag.REQUISITE == "REQUISITE"
        assert ControlFlag.SUFFICIENT == "SUFFICIENT"
        assert ControlFlag.OPTIONAL == "OPTIONAL"

    def test_mandatory_flags(self):
        """Test that only REQUIRED and REQUISITE are mandatory."""
        assert ControlFlag.REQUIRED.is_mandatory
        assert ControlFlag.REQUISITE.is_mandatory
        assert not ControlFlag.SUFFICIENT.is_mandatory
        assert not ControlFlag.OPTIONAL.is_mandatory


class TestRequestContext:
    """Test RequestContext model."""

    def test_create_minimal_context(self):
        """Test creating context with only required fields."""
        context = RequestContext(user_id="alice")

        assert context.user_id == "alice"
        assert context.principal == {}
        assert context.project is None
        assert context.group is None
        assert context.attributes == {}
        assert context.request_id is None

    def test_context_is_read_only(self):
        """Test that context fields cannot be reassigned."""
        context = RequestContext(user_id="alice", project="kernel")

        with pytest.raises(ValidationError):
            context.user_id = "mallory"

    def test_context_requires_user(self):
        """Test that the principal identifier is mandatory."""
        with pytest.raises(ValidationError):
            RequestContext()


class TestDecision:
    """Test Decision and ReloadResult models."""

    def test_decision_serializes_enum_values(self):
        """Test that outcome and scope serialize as plain strings."""
        decision = Decision(
            allowed=True,
            outcome=DecisionOutcome.DEFAULT,
            scope=Scope.PROJECT,
            target="kernel",
            evaluation_time_ms=0.1,
        )
        data = decision.model_dump()

        assert data["outcome"] == "DEFAULT"
        assert data["scope"] == "PROJECT"
        assert data["generation"] is None
        assert data["evaluated"] == []

    def test_reload_result_published(self):
        """Test the published shortcut."""
        published = ReloadResult(status=ReloadStatus.PUBLISHED, generation=2, duration_ms=1.0)
        failed = ReloadResult(status=ReloadStatus.FAILED, generation=3, duration_ms=1.0, error="boom")

        assert published.published
        assert not failed.published


class TestPolicyModuleInterface:
    """Test the PolicyModule contract."""

    def test_capabilities_follow_overrides(self):
        """Test that capabilities list exactly the overridden predicates."""

        class ProjectOnly(PolicyModule):
            def is_project_allowed(self, context, project):
                return True

        class Everything(PolicyModule):
            def is_allowed(self, context):
                return True

            def is_project_allowed(self, context, project):
                return True

            def is_group_allowed(self, context, group):
                return True

        assert ProjectOnly().capabilities == frozenset({Capability.PROJECT})
        assert Everything().capabilities == frozenset(Capability)
        assert PolicyModule().capabilities == frozenset()

    def test_capabilities_are_inherited(self):
        """Test that a subclass of an implementing module keeps its capabilities."""

        class Base(PolicyModule):
            def is_group_allowed(self, context, group):
                return True

        class Derived(Base):
            pass

        assert Derived().supports(Capability.GROUP)
        assert not Derived().supports(Capability.REQUEST)

    def test_default_lifecycle(self):
        """Test the default load/unload hooks and initial state."""

        class Module(PolicyModule):
            def is_allowed(self, context):
                return True

        module = Module()
        assert module.state == ModuleState.UNLOADED
        assert module.name == "Module"

        assert module.load({"key": "value"}) is True
        assert module.settings == {"key": "value"}
        assert module.unload() is None

    def test_name_can_be_rebound(self):
        """Test that the loader can rebind the module name."""

        class Module(PolicyModule):
            def is_allowed(self, context):
                return True

        module = Module()
        module.name = "configured_name"
        assert module.name == "configured_name"
