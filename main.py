import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from dal.conversation_dal import ConversationDAL
from dal.settings_dal import SettingsDAL
from routes.chat_ws import router as chat_ws_router
from routes.conversation_route import router as conversation_router
from routes.model_route import router as model_router
from routes.preferences_route import router as preferences_router
from services.backend.catalog import ModelDirectory
from services.backend.transport import BackendTransport
from services.chat.chat_context import ChatContext
from utils.config import AppConfig
from utils.database_init import AsyncDatabaseInitializer

BASE_DIR = Path(__file__).resolve().parent
PUBLIC_DIR = BASE_DIR / "public"

load_dotenv()  # Load environment variables from .env file if present

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan manager to initialize:
      - the SQLite database (kept across restarts, at DATABASE_DIR/chat.db)
      - the backend transport and model directory
      - the chat context shared by routes and the websocket
    and attach them to `app.state`.
    """
    config: AppConfig = getattr(app.state, "config", None) or AppConfig.from_env()
    logging.basicConfig(level=config.log_level)
    app.state.config = config

    db_initializer = AsyncDatabaseInitializer(config.database_dir)
    await db_initializer.ensure_database()
    app.state.db_initializer = db_initializer

    settings = SettingsDAL(db_initializer)
    preferences = await settings.load_preferences()

    try:
        transport = BackendTransport(config.base_url, config.api_key)
    except Exception as exc:
        raise RuntimeError("Failed to initialize the backend client") from exc
    app.state.transport = transport

    directory = ModelDirectory(transport, config.default_models)
    context = ChatContext(
        transport,
        directory,
        ConversationDAL(db_initializer),
        preferences=preferences,
        settings=settings,
        window=config.context_window,
        buffer_limit=config.stream_buffer_limit,
    )
    app.state.chat_context = context

    # The server may start after us; /models/refresh retries discovery.
    try:
        await context.discover()
    except Exception as exc:  # pylint: disable=broad-exception-caught
        LOGGER.warning("Initial model discovery failed: %s", exc)

    try:
        yield
    finally:
        await transport.aclose()


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.
    """
    app = FastAPI(lifespan=lifespan)
    app.state.config = config

    # Serve static assets from the public directory, if it exists.
    if PUBLIC_DIR.exists():
        app.mount("/public", StaticFiles(directory=PUBLIC_DIR), name="public")

    @app.get("/", include_in_schema=False)
    async def serve_index():
        """
        Serve the frontend index page from the public directory.
        """
        index_path = PUBLIC_DIR / "index.html"
        if not index_path.exists():
            raise HTTPException(status_code=404, detail="Frontend not found")
        return FileResponse(index_path)

    @app.get("/health")
    async def health(request: Request):
        """
        Health check reporting database presence and the backend model state.
        """
        has_db = hasattr(request.app.state, "db_initializer")
        context = getattr(request.app.state, "chat_context", None)
        return {
            "ok": True,
            "db_initialized": has_db,
            "backend_available": bool(context and context.directory.models),
            "selected_model": context.directory.selection if context else None,
        }

    # Register application routers
    app.include_router(model_router)
    app.include_router(preferences_router)
    app.include_router(conversation_router)
    app.include_router(chat_ws_router)

    return app


app = create_app()
