"""
Gateway module - Admin API routes for the authorization framework
"""

from gateway.api import create_app
from gateway.models import AuthorizationCheckRequest, ErrorResponse, StatusResponse

__all__ = [
    "create_app",
    "AuthorizationCheckRequest",
    "ErrorResponse",
    "StatusResponse",
]
