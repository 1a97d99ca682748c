"""
Disabled users policy.

Denies every check for the users listed in its settings, e.g. accounts
being offboarded. Stack it as REQUISITE so a match stops evaluation.

Settings:
    users: list of user ids to lock out
"""

from typing import Any, FrozenSet, Mapping

from policy_engine.interfaces import PolicyModule
from policy_engine.models import RequestContext


class DisabledUsersPolicy(PolicyModule):

    required_settings = ("users",)

    def __init__(self):
        super().__init__()
        self._disabled: FrozenSet[str] = frozenset()

    def load(self, settings: Mapping[str, Any]) -> bool:
        self._disabled = frozenset(str(user) for user in settings["users"] or [])
        return super().load(settings)

    def is_allowed(self, context: RequestContext) -> bool:
        return context.user_id not in self._disabled

    def is_project_allowed(self, context: RequestContext, project: str) -> bool:
        return self.is_allowed(context)

    def is_group_allowed(self, context: RequestContext, group: str) -> bool:
        return self.is_allowed(context)
