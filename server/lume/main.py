from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
from lume.config import get_settings
from fastapi import APIRouter

# API routers
from lume.api.v1.models import router as models_router
from lume.api.v1.chat import router as chat_router
from lume.api.v1.conversations import router as conversations_router
from lume.api.v1.artifacts import router as artifacts_router
from lume.core.logging import setup_logging
from lume.db.session import dispose_engine, init_db
from lume.errors import LumeError

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    return f"{where}: {first.get('msg', 'invalid')}" if where else str(first.get("msg", "Invalid request"))


def install_error_handlers(app: FastAPI) -> None:
    """Every error leaves the API as ``{"error": message}``."""

    @app.exception_handler(LumeError)
    async def _lume_error(request: Request, exc: LumeError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


def create_app() -> FastAPI:
    settings = get_settings()
    # Setup logging early
    setup_logging(settings.log_level)
    app = FastAPI(title="Lume Server", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(o).rstrip("/") for o in settings.allowed_origins],
        # Robust local dev: allow both localhost and 127.0.0.1 on port 3000 via regex
        allow_origin_regex=r"https?://(localhost|127\.0\.0\.1):3000",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        # The web client reads the conversation id of a new stream from here
        expose_headers=["X-Conversation-Id"],
    )
    install_error_handlers(app)

    # Mount API v1
    api_v1 = APIRouter()
    api_v1.include_router(models_router, prefix="/v1")
    api_v1.include_router(chat_router, prefix="/v1")
    api_v1.include_router(conversations_router, prefix="/v1")
    api_v1.include_router(artifacts_router, prefix="/v1")
    app.include_router(api_v1, prefix="/api")

    @app.on_event("startup")
    async def _startup() -> None:
        # Ensure SQLite tables exist
        await init_db()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await dispose_engine()

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.get("/")
    def root():
        return {"service": "lume", "version": "0.1.0"}

    return app


app = create_app()
