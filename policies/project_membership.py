"""
Project membership policy.

Project-scoped: a user may access a project when the project appears in
the principal's project attribute (filled by the authentication layer,
e.g. from LDAP) or when the user is listed as a member in the settings.

Settings:
    attribute: principal attribute holding project names (default "projects")
    members: optional mapping of project name to list of user ids
"""

from typing import Any, Dict, FrozenSet, Mapping

from policy_engine.interfaces import PolicyModule
from policy_engine.models import RequestContext


class ProjectMembershipPolicy(PolicyModule):
    """Allows members of a project to access it."""

    def __init__(self):
        super().__init__()
        self._attribute = "projects"
        self._members: Dict[str, FrozenSet[str]] = {}

    def load(self, settings: Mapping[str, Any]) -> bool:
        self._attribute = settings.get("attribute", "projects")
        members = settings.get("members", {}) or {}
        if not isinstance(members, dict):
            return False
        self._members = {
            str(project): frozenset(str(user) for user in users or [])
            for project, users in members.items()
        }
        return super().load(settings)

    def is_project_allowed(self, context: RequestContext, project: str) -> bool:
        projects = context.principal.get(self._attribute) or []
        if project in projects:
            return True
        return context.user_id in self._members.get(project, frozenset())
