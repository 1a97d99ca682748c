"""
HTTP request and response models for the authorization admin API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from policy_engine.models import RequestContext, ReloadResult


class AuthorizationCheckRequest(BaseModel):
    """HTTP request model for an authorization check."""

    user_id: str = Field(..., min_length=1, description="Identifier of the authenticated principal")
    principal: Dict[str, Any] = Field(
        default_factory=dict, description="Principal attributes (groups, roles...)"
    )
    project: Optional[str] = Field(None, description="Check access to this project")
    group: Optional[str] = Field(None, description="Check access to this project group")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Additional request attributes"
    )

    @model_validator(mode="after")
    def _single_scope(self) -> "AuthorizationCheckRequest":
        if self.project is not None and self.group is not None:
            raise ValueError("Specify either 'project' or 'group', not both")
        return self

    def to_context(self, request_id: str) -> RequestContext:
        return RequestContext(
            user_id=self.user_id,
            principal=self.principal,
            project=self.project,
            group=self.group,
            attributes=self.attributes,
            request_id=request_id,
        )


class StatusResponse(BaseModel):
    """HTTP response model for the framework status endpoint."""

    state: str = Field(..., description="UNINITIALIZED, BUILDING, READY or STOPPED")
    generation: Optional[int] = Field(None, description="Generation of the live stack")
    entries: List[str] = Field(default_factory=list, description="Top-level entries of the live stack")
    plugin_directory: Optional[str] = None
    default_decision: str = Field(..., description="Answer used when no stack is available")
    watching: bool = Field(..., description="Whether plugin directory changes trigger reloads")
    last_reload: Optional[ReloadResult] = None

    model_config = ConfigDict(use_enum_values=True)


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Machine-readable error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
