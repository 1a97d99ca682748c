"""
FastAPI routes for the authorization admin API.

Exposes the framework to operators (status, manual reload) and to request
layers that prefer an HTTP sidecar over an in-process call (check).
"""

import uuid
from typing import List, Optional

import structlog.contextvars
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware

from common.logging import get_logger
from gateway.models import AuthorizationCheckRequest, ErrorResponse, StatusResponse
from policy_engine.framework import AuthorizationFramework
from policy_engine.models import Decision, ReloadResult

logger = get_logger(__name__)


def create_app(
    framework: AuthorizationFramework,
    manage_lifecycle: bool = True,
    enable_cors: bool = False,
    allowed_origins: Optional[List[str]] = None,
    reload_timeout: Optional[float] = 60.0,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        framework: AuthorizationFramework serving the checks
        manage_lifecycle: Start the framework on app startup and stop it on shutdown
        enable_cors: Whether to enable CORS middleware
        allowed_origins: Origins accepted by the CORS middleware (default: any)
        reload_timeout: Seconds a reload request waits for its build

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Source Search Authorization",
        description="Pluggable, hot-reloadable authorization for source code search",
        version="0.1.0",
    )
    app.state.framework = framework

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if manage_lifecycle:
        @app.on_event("startup")
        def start_authorization():
            """Build the first policy stack and start watching the plugin directory."""
            framework.start()

        @app.on_event("shutdown")
        def stop_authorization():
            """Release watcher resources and module handles."""
            framework.stop()

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy", "authorization": framework.state.value}

    @app.get("/api/v1/authorization/status", response_model=StatusResponse)
    def authorization_status():
        """Current state, live generation and last reload of the framework."""
        return StatusResponse(**framework.status())

    @app.put(
        "/api/v1/authorization/reload",
        response_model=ReloadResult,
        responses={409: {"model": ReloadResult}, 503: {"model": ErrorResponse}},
    )
    def reload_authorization(response: Response):
        """
        Rebuild the policy stack from the plugin directory.

        200 when the new stack was published, 409 when the build failed or
        was superseded (the previous stack stays live).
        """
        logger.info("api_reload_requested")
        result = framework.reload(wait=True, timeout=reload_timeout)

        if result is None:
            logger.warning("api_reload_unavailable", state=framework.state.value)
            raise HTTPException(
                status_code=503,
                detail=ErrorResponse(
                    error="Reload did not complete",
                    error_code="RELOAD_UNAVAILABLE",
                    details={"state": framework.state.value},
                ).model_dump(),
            )

        if not result.published:
            response.status_code = 409
        return result

    @app.post("/api/v1/authorization/check", response_model=Decision)
    def check_authorization(request: AuthorizationCheckRequest, response: Response):
        """Evaluate the live policy stack for one request context."""
        request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=request_id)
        try:
            context = request.to_context(request_id)
            decision = framework.decide(context, project=request.project, group=request.group)
            response.headers["X-Trace-Id"] = request_id

            logger.info(
                "api_authorization_checked",
                user_id=request.user_id,
                project=request.project,
                group=request.group,
                outcome=decision.outcome,
                allowed=decision.allowed,
            )
            return decision
        finally:
            structlog.contextvars.clear_contextvars()

    return app
