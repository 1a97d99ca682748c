"""
Core data models for authorization.

Defines the control flags, lifecycle states, request context and decision
structures that form the contract between the authorization framework,
policy modules and the request layer that calls the framework.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ControlFlag(str, Enum):
    """
    How a stack entry's result influences the overall decision.

    REQUIRED - must pass; on failure evaluation continues but the final result is deny
    REQUISITE - must pass; on failure evaluation stops with deny
    SUFFICIENT - on success evaluation stops with allow, unless a required entry failed
    OPTIONAL - result ignored unless it is the only entry of its stack
    """

    REQUIRED = "REQUIRED"
    REQUISITE = "REQUISITE"
    SUFFICIENT = "SUFFICIENT"
    OPTIONAL = "OPTIONAL"

    @property
    def is_mandatory(self) -> bool:
        """Entries that may not be silently dropped from a stack."""
        return self in (ControlFlag.REQUIRED, ControlFlag.REQUISITE)


class ModuleState(str, Enum):
    """Lifecycle state of a policy module instance."""

    UNLOADED = "UNLOADED"
    LOADED = "LOADED"
    FAILED = "FAILED"


class Capability(str, Enum):
    """Predicate kinds a policy module can implement."""

    REQUEST = "REQUEST"
    PROJECT = "PROJECT"
    GROUP = "GROUP"


# The evaluation scope of a check maps one-to-one onto the capability needed.
Scope = Capability


class DecisionOutcome(str, Enum):
    """
    Outcome of an authorization check.

    DEFAULT marks decisions taken without a policy stack (nothing built yet,
    empty stack, framework stopped) so they can be told apart from a
    genuine policy ALLOW in logs and metrics.
    """

    ALLOW = "ALLOW"
    DENY = "DENY"
    DEFAULT = "DEFAULT"


class FrameworkState(str, Enum):
    """Lifecycle state of the authorization framework."""

    UNINITIALIZED = "UNINITIALIZED"
    BUILDING = "BUILDING"
    READY = "READY"
    STOPPED = "STOPPED"


class ReloadStatus(str, Enum):
    """What happened to a rebuild of the policy stack."""

    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"
    SUPERSEDED = "SUPERSEDED"
    STOPPED = "STOPPED"


class RequestContext(BaseModel):
    """
    Read-only bundle describing who is asking for what.

    Built by the request layer once per check. Policy modules receive it
    as-is and must treat it as immutable.
    """

    user_id: str = Field(..., description="Identifier of the authenticated principal")
    principal: Dict[str, Any] = Field(
        default_factory=dict,
        description="Attributes of the authenticated principal (groups, roles, email...)",
    )
    project: Optional[str] = Field(None, description="Target project name, if any")
    group: Optional[str] = Field(None, description="Target project group name, if any")
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary request attributes (path, method, remote address...)",
    )
    request_id: Optional[str] = Field(None, description="Unique request identifier for tracing")

    model_config = ConfigDict(frozen=True)


class Decision(BaseModel):
    """
    Result of one authorization check.

    Carries enough information for the caller to log or audit the decision.
    """

    allowed: bool = Field(..., description="Whether access is granted")
    outcome: DecisionOutcome = Field(..., description="ALLOW, DENY or DEFAULT")
    scope: Scope = Field(..., description="Which predicate kind was evaluated")
    target: Optional[str] = Field(None, description="Project or group name for scoped checks")
    generation: Optional[int] = Field(
        None, description="Generation of the stack that decided (None for DEFAULT)"
    )
    decided_by: Optional[str] = Field(
        None, description="Entry that short-circuited the evaluation, if any"
    )
    evaluated: List[str] = Field(
        default_factory=list,
        description="Names of the entries whose predicate was invoked, in order",
    )
    evaluation_time_ms: float = Field(..., description="Time taken by the check in milliseconds")

    model_config = ConfigDict(use_enum_values=True)


class ReloadResult(BaseModel):
    """
    Outcome of one load-build-swap cycle.

    Exposed to administrators and logged for external metrics collection.
    """

    status: ReloadStatus = Field(..., description="PUBLISHED, FAILED, SUPERSEDED or STOPPED")
    generation: int = Field(..., description="Generation number assigned to the build")
    entries: List[str] = Field(
        default_factory=list, description="Entry names of the built stack, in order"
    )
    failures: Dict[str, str] = Field(
        default_factory=dict,
        description="Module load failures keyed by entry key",
    )
    error: Optional[str] = Field(None, description="Why the build was not published")
    duration_ms: float = Field(..., description="Time taken by the rebuild in milliseconds")

    model_config = ConfigDict(use_enum_values=True)

    @property
    def published(self) -> bool:
        return self.status == ReloadStatus.PUBLISHED
