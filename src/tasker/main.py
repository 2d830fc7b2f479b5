from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import get_services
from .errors import TaskerError
from .log import configure_logging
from .routers import categories as categories_router
from .routers import comments as comments_router
from .routers import todos as todos_router
from .settings import get_settings

openapi_tags = [
    {"name": "health", "description": "Service health and status endpoints."},
    {
        "name": "todos",
        "description": "Todo CRUD with filtering, sorting and pagination, statistics, and file attachments.",
    },
    {"name": "categories", "description": "Categories used to tag todos."},
    {"name": "comments", "description": "Comments on todos."},
]

_settings = get_settings()
configure_logging(_settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Only tear down what was actually built
    if get_services.cache_info().currsize:
        get_services().dispatcher.shutdown(wait=True)


app = FastAPI(
    title="Tasker Backend",
    description="Backend API service for managing todos, categories, comments and attachments.",
    version="0.1.0",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Configure CORS based on settings (.env -> CORS_ALLOW_ORIGINS), with '*' fallback
allow_all = (_settings.cors_allow_origins == ["*"]) or (len(_settings.cors_allow_origins) == 0)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all else _settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handlers for consistent JSON on validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Return a consistent JSON structure for request validation errors.

    Response format:
        {
            "error": "ValidationError",
            "detail": [... pydantic/fastapi error details ...],
            "message": "Request validation failed"
        }
    """
    return JSONResponse(
        status_code=422,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "detail": jsonable_encoder(exc.errors(), custom_encoder={Exception: str}),
        },
    )


@app.exception_handler(TaskerError)
async def domain_exception_handler(request: Request, exc: TaskerError) -> JSONResponse:
    """
    Render domain errors with the status code attached to their class.

    Response format:
        {"error": "NotFoundError", "message": "Todo not found", "detail": null}
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "detail": jsonable_encoder(exc.detail),
        },
    )


# PUBLIC_INTERFACE
@app.get("/", summary="Health Check", tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        A JSON object indicating service health.
    """
    return {
        "message": "Healthy",
        "backend": _settings.persistence_backend,
        "storage": _settings.storage_backend,
    }


# Include routers
app.include_router(todos_router.router)
app.include_router(categories_router.router)
app.include_router(comments_router.router)
