import logging
import sys
import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request

from api.shared.dtos import ErrorResponse, HealthCheckResponse
from api.shared.exceptions import ChatMemoryException, NotFoundError, ValidationError
from core.logging_config import configure_logging
from core.settings import SETTINGS
from di.container import ApplicationContainer as DependencyContainer
from memory.exceptions import TurnStageError

logger = structlog.get_logger("chat_memory")


class CustomFastAPI(FastAPI):
    container: DependencyContainer


def _uses_postgres() -> bool:
    return SETTINGS.MEMORY.MEMORY_BACKEND == "postgres"


@asynccontextmanager
async def lifespan(_app: CustomFastAPI):
    logger.info("startup_begin", backend=SETTINGS.MEMORY.MEMORY_BACKEND)
    start_time = time.time()

    try:
        if _uses_postgres():
            db_start = time.time()
            db_resource = _app.container.infrastructure.database()
            await db_resource.init()
            await db_resource.ping()
            logger.info(
                "database_connected", elapsed_s=round(time.time() - db_start, 2)
            )
        logger.info("startup_complete", elapsed_s=round(time.time() - start_time, 2))
    except Exception as e:
        logger.exception("startup_failed", error=str(e))
        raise

    yield

    try:
        if _uses_postgres():
            db_resource = _app.container.infrastructure.database()
            await db_resource.shutdown()
        logger.info("shutdown_complete")
    except Exception as e:
        logger.exception("shutdown_failed", error=str(e))


def _status_for(exc: ChatMemoryException) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, TurnStageError) and exc.retryable:
        return 503
    return 500


def _error_response(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def create_fastapi_app() -> CustomFastAPI:
    configure_logging(SETTINGS.APP)

    origins = {
        "*",
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:8000",
    }

    _app = CustomFastAPI(
        title="Chat Memory API",
        description="Chat service with recency and similarity based conversational memory",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Initialize dependency container
    _app.container = DependencyContainer()
    _app.container.infrastructure.config.from_dict(SETTINGS.model_dump())
    _app.container.wire(modules=[sys.modules[__name__]])
    _app.container.init_resources()

    logging.getLogger("uvicorn.error").disabled = False
    logging.getLogger("uvicorn.access").disabled = False

    _app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include feature routers
    from api.features.chat.router import router as chat_router
    from api.features.conversation.router import router as conversation_router

    _app.include_router(chat_router, prefix="/api/v1/chat", tags=["Chat"])
    _app.include_router(
        conversation_router, prefix="/api/v1/conversations", tags=["Conversations"]
    )

    _register_routes(_app)
    _register_exception_handlers(_app)
    return _app


def _register_routes(_app: CustomFastAPI) -> None:
    @_app.get("/")
    async def root():
        return {"message": "Chat Memory API is running", "status": "ok"}

    @_app.get("/health")
    async def health():
        return {"status": "ok"}

    @_app.get("/ready", response_model=HealthCheckResponse)
    async def ready():
        backend = SETTINGS.MEMORY.MEMORY_BACKEND
        dependencies = {"backend": backend}
        if backend == "postgres":
            try:
                await _app.container.infrastructure.database().ping()
                dependencies["database"] = "ok"
            except Exception as e:
                logger.warning("readiness_check_failed", error=str(e))
                dependencies["database"] = "unavailable"
                return JSONResponse(
                    status_code=503,
                    content=HealthCheckResponse(
                        status="unavailable", dependencies=dependencies
                    ).model_dump(mode="json"),
                )
        return HealthCheckResponse(status="ok", dependencies=dependencies)


def _register_exception_handlers(_app: CustomFastAPI) -> None:
    @_app.exception_handler(ChatMemoryException)
    async def chat_memory_exception_handler(request: Request, exc: ChatMemoryException):
        status_code = _status_for(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            "request_failed",
            path=request.url.path,
            error_code=exc.error_code,
            status_code=status_code,
            error=exc.message,
        )
        return _error_response(
            status_code,
            ErrorResponse(
                error_code=exc.error_code,
                message=exc.message,
                retryable=bool(getattr(exc, "retryable", False)),
                details=exc.details or None,
            ),
        )

    @_app.exception_handler(404)
    async def not_found_handler(request: Request, exc: HTTPException):
        return _error_response(
            404,
            ErrorResponse(
                error_code="NOT_FOUND", message=f"{exc.detail} : {request.url.path}"
            ),
        )

    @_app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        return _error_response(
            422,
            ErrorResponse(
                error_code="VALIDATION_ERROR",
                message="Request validation failed",
                details={
                    "errors": [
                        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
                        for err in exc.errors()
                    ]
                },
            ),
        )

    @_app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
        return _error_response(
            500,
            ErrorResponse(
                error_code="INTERNAL_ERROR", message="An unexpected error occurred"
            ),
        )


app = create_fastapi_app()
