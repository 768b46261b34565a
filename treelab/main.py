# treelab/main.py
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

# --- Import Core Backend Components ---
from treelab.routers import auth, profile, admin, attachments
from treelab.config import Settings, load_settings, cors_origins_from_env
from treelab.utils.database import make_engine, make_sessionmaker, create_tables
from treelab.services.session_service import SessionStore
from treelab.services.encryption_service import EncryptionService
from treelab.services.attachment_service import AttachmentStore

logger = logging.getLogger("treelab")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _is_suspicious_path(request: Request) -> bool:
    raw = request.url.path + "?" + request.url.query
    if "<" in request.url.path or ">" in request.url.path:
        return True
    upper = raw.upper()
    return "%3C" in upper or "%3E" in upper


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application. Settings are loaded from the environment at startup
    unless given explicitly; missing secrets abort startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or load_settings()
        configure_logging(resolved.log_level)
        logger.info("Application Startup: preparing data directory and database...")
        resolved.users_dir.mkdir(parents=True, exist_ok=True)

        engine = make_engine(resolved.database_url)
        await create_tables(engine)

        app.state.settings = resolved
        app.state.engine = engine
        app.state.sessionmaker = make_sessionmaker(engine)
        app.state.session_store = SessionStore(resolved.session_secret, resolved.session_max_age_seconds)
        app.state.encryption = EncryptionService.from_secret(resolved.encryption_key)
        app.state.attachment_store = AttachmentStore(resolved.users_dir)
        logger.info("Application Startup: ready.")
        yield
        await engine.dispose()
        logger.info("Application Shutdown: Goodbye!")

    app = FastAPI(title="Treelab", lifespan=lifespan)

    # --- Block HTML injection attempts in the URL before routing ---
    @app.middleware("http")
    async def block_markup_in_path(request: Request, call_next):
        if _is_suspicious_path(request):
            logger.warning(f"Blocked potentially malicious request to path: {request.url.path}")
            return RedirectResponse(url="/", status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        return await call_next(request)

    origins = settings.cors_origins if settings else cors_origins_from_env()
    app.add_middleware(
        CORSMiddleware, allow_origins=origins, allow_credentials=True,
        allow_methods=["*"], allow_headers=["*"],
    )

    # Malformed request bodies are client errors, reported as 400.
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected malformed request to {request.url.path}")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Invalid request"})

    app.include_router(auth.router)         # /api/auth/...
    app.include_router(profile.router)      # /api/me, /api/settings/public
    app.include_router(admin.router)        # /api/admin/...
    app.include_router(attachments.router)  # /attachments/..., /api/upload/attachment

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.get("/")
    def read_root():
        return {"message": "Treelab Backend Running."}

    return app


app = create_app()
