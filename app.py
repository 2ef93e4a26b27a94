"""
Production-safe FastAPI application entrypoint.

This module provides a clean FastAPI app instance with NO import-time side effects
beyond logging configuration:
- No environment mutations
- No database writes (the JSON database is created on first use)

For production deployment, import directly: from app import app
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Any, Optional
import os
import logging

# Configure logging (this is acceptable at import time - just sets up handlers)
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


# Environment mode detection (read-only, no mutations)
def _is_dev_mode() -> bool:
    """Check if running in development mode. Does NOT mutate environment."""
    env_value = os.getenv("ENV", "prod").lower()
    return env_value in ("dev", "development", "local")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for startup/shutdown events.

    Validates the LLM provider configuration and builds the workflow registry
    so a broken step table fails at startup instead of on the first message.
    """
    is_dev = _is_dev_mode()

    from llm.provider_config import validate_provider_config
    is_valid, msg = validate_provider_config()
    if is_valid:
        logger.info("[Backend] %s", msg)
    elif is_dev:
        logger.warning("[Backend] %s", msg)
        logger.warning("[Backend] Running in degraded mode - fix configuration!")
    else:
        logger.critical("[Backend] STARTUP BLOCKED: %s", msg)
        raise RuntimeError(msg)

    from workflows.runtime.registry import get_registry
    registry = get_registry()
    logger.info("[Backend] %d workflows registered", len(registry))

    yield
    # Shutdown logic (if any) goes here


def create_app(
    *,
    executor: Optional[Any] = None,
    thread_store: Optional[Any] = None,
    extractor: Optional[Any] = None,
    classifier: Optional[Any] = None,
    services: Optional[Any] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    This is a factory function that returns a fully configured app.
    Safe to call multiple times (e.g., for testing). Collaborators passed
    here replace the configured defaults for every request.
    """
    app = FastAPI(title="Insurance Workflow Backend", lifespan=lifespan)
    app.state.executor = executor
    app.state.thread_store = thread_store
    app.state.extractor = extractor
    app.state.classifier = classifier
    app.state.services = services

    # Import routers (lazy import to avoid circular dependencies)
    from api.routes import messages_router

    app.include_router(messages_router)

    _configure_cors(app)
    _add_root_endpoint(app)

    return app


def _configure_cors(app: FastAPI) -> None:
    """Allow the configured chat UI origins, or any localhost port when none are set."""
    from workflows.io.config_store import get_settings

    origins = list(get_settings().allowed_origins)
    if origins:
        origin_options = {"allow_origins": origins}
    else:
        origin_options = {"allow_origin_regex": r"^https?://(localhost|127\.0\.0\.1|0\.0\.0\.0)(:\d+)?$"}
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        **origin_options,
    )


def _add_root_endpoint(app: FastAPI) -> None:
    """Add root health check endpoint."""

    @app.get("/")
    async def root():
        return {"status": "ok"}


# Create the default app instance
# This is what gets imported by uvicorn (e.g., uvicorn app:app)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
