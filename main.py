"""
Main entry point for the authorization service.

Loads configuration, creates the authorization framework and serves the
admin API. The framework is started on application startup and stopped
on shutdown.
"""

import os

from dotenv import load_dotenv

load_dotenv()

from common.logging import configure_logging, get_logger
from gateway import create_app
from policy_engine.config_loader import FrameworkConfig, load_framework_config
from policy_engine.framework import AuthorizationFramework

log_level = os.getenv("LOG_LEVEL", "INFO")
configure_logging(log_level=log_level, json_logs=os.getenv("LOG_FORMAT", "json") == "json")
logger = get_logger(__name__)


def create_authorization_app(config_path: str = "config/default.yaml"):
    """
    Create and configure the authorization application.

    A configuration that cannot be read does not prevent startup: the
    framework then runs without a stack and answers with the default
    decision until a reload succeeds.

    Args:
        config_path: Path to configuration YAML file

    Returns:
        Configured FastAPI app
    """
    logger.info("initializing_authorization_framework", config_path=config_path)
    try:
        config = load_framework_config(config_path)
    except Exception as e:
        logger.error(
            "authorization_config_load_failed",
            config_path=config_path,
            error=str(e),
            error_type=type(e).__name__,
            hint="Every check returns the default decision until the configuration is fixed and reloaded.",
        )
        config = FrameworkConfig()

    framework = AuthorizationFramework(config, config_path=config_path)
    origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "").split(",") if origin.strip()]
    return create_app(framework, enable_cors=bool(origins), allowed_origins=origins or None)


app = create_authorization_app(os.getenv("AUTHZ_CONFIG", "config/default.yaml"))


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    logger.info(
        "starting_authorization_server",
        host=host,
        port=port,
        docs_url=f"http://{host}:{port}/docs",
    )

    uvicorn.run(app, host=host, port=port)
