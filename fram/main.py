import logging
from typing import Optional

from fastapi import FastAPI

from .api import TextSessionStore, router
from .config import settings
from .tools.handlers import BUILTIN_HANDLERS
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def load_registry(path: Optional[str] = None) -> ToolRegistry:
    """Load and lock the compiled registry, bound to the builtin handlers."""
    from .tools import builtin  # noqa: F401  (binds handlers)

    registry = ToolRegistry(BUILTIN_HANDLERS, production=settings.production)
    registry.load(path or settings.registry_path)
    registry.lock()
    logger.info(f"Tool registry v{registry.version} loaded ({len(registry.snapshot())} tools)")
    return registry


def create_app(registry: Optional[ToolRegistry] = None,
               store: Optional[TextSessionStore] = None) -> FastAPI:
    registry = registry or load_registry()

    app = FastAPI(title="fram")
    app.state.registry = registry
    app.state.text_sessions = store or TextSessionStore(registry)
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"ok": True, "registry_version": registry.version}

    return app
