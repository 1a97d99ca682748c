"""
Group membership policy.

Group-scoped: a user may access a project group when the principal's
group attribute contains it.

Settings:
    attribute: principal attribute holding group names (default "groups")
"""

from typing import Any, Mapping

from policy_engine.interfaces import PolicyModule
from policy_engine.models import RequestContext


class GroupMembershipPolicy(PolicyModule):

    def load(self, settings: Mapping[str, Any]) -> bool:
        self._attribute = settings.get("attribute", "groups")
        return super().load(settings)

    def is_group_allowed(self, context: RequestContext, group: str) -> bool:
        return group in (context.principal.get(self._attribute) or [])
