"""
User whitelist policy.

Grants access to the users listed in its settings, for every kind of
check. Typically stacked as REQUIRED to restrict a whole instance, or as
SUFFICIENT in front of finer-grained modules to let administrators in.

Settings:
    users: list of user ids
"""

from typing import Any, FrozenSet, Mapping

from policy_engine.interfaces import PolicyModule
from policy_engine.models import RequestContext


class UserWhitelistPolicy(PolicyModule):
    """Allows exactly the whitelisted users."""

    required_settings = ("users",)

    def __init__(self):
        super().__init__()
        self._users: FrozenSet[str] = frozenset()

    def load(self, settings: Mapping[str, Any]) -> bool:
        users = settings["users"]
        if not isinstance(users, (list, tuple, set)):
            return False
        self._users = frozenset(str(user) for user in users)
        return super().load(settings)

    def is_allowed(self, context: RequestContext) -> bool:
        return context.user_id in self._users

    def is_project_allowed(self, context: RequestContext, project: str) -> bool:
        return self.is_allowed(context)

    def is_group_allowed(self, context: RequestContext, group: str) -> bool:
        return self.is_allowed(context)
