"""
Policy module interface definition.

Defines the contract that all pluggable authorization modules must implement.
"""

from abc import ABC
from typing import Any, Dict, FrozenSet, Mapping, Tuple

from policy_engine.models import Capability, ModuleState, RequestContext


class PolicyModule(ABC):
    """
    Base class for all policy modules.

    A module lives in the plugin directory as ``<name>.py`` (or a package
    ``<name>/__init__.py``) and defines exactly one concrete subclass of
    this class. It takes part in authorization by overriding one or more
    of the predicates:

        is_allowed(context)                    request-level check
        is_project_allowed(context, project)   project-scoped check
        is_group_allowed(context, group)       group-scoped check

    Predicates run synchronously on the request path: they must not block
    and must not mutate the context. A predicate the module does not
    override is treated as an abstention for that scope.

    Modules are independent and should not import from each other.
    """

    #: Settings keys that configuration must provide for load() to run.
    required_settings: Tuple[str, ...] = ()

    def __init__(self):
        self.state = ModuleState.UNLOADED
        self.settings: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        """
        Return the name of this policy module.

        Defaults to the class name; the loader rebinds it to the configured
        module name so log events line up with the configuration.
        """
        return getattr(self, "_name", type(self).__name__)

    @name.setter
    def name(self, value: str) -> None:
        self._name = value

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        """Predicate kinds this module overrides."""
        cls = type(self)
        found = set()
        if cls.is_allowed is not PolicyModule.is_allowed:
            found.add(Capability.REQUEST)
        if cls.is_project_allowed is not PolicyModule.is_project_allowed:
            found.add(Capability.PROJECT)
        if cls.is_group_allowed is not PolicyModule.is_group_allowed:
            found.add(Capability.GROUP)
        return frozenset(found)

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def is_allowed(self, context: RequestContext) -> bool:
        """Request-level predicate."""
        raise NotImplementedError

    def is_project_allowed(self, context: RequestContext, project: str) -> bool:
        """Project-scoped predicate."""
        raise NotImplementedError

    def is_group_allowed(self, context: RequestContext, group: str) -> bool:
        """Group-scoped predicate."""
        raise NotImplementedError

    def load(self, settings: Mapping[str, Any]) -> bool:
        """
        Prepare the module with its configured settings.

        Called once, right after instantiation. Returning False or raising
        marks the module FAILED and keeps it out of the stack being built.
        Override this if your module needs configuration or resources.

        Args:
            settings: Settings mapping from the module's stack entry

        Returns:
            True (or None) on success, False on failure
        """
        self.settings = dict(settings)
        return True

    def unload(self) -> None:
        """
        Release resources held by the module.

        Called exactly once, after no live or in-flight evaluation can reach
        the module anymore. Errors are logged by the framework, not propagated.
        """
        pass
