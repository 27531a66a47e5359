import asyncio
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from .api.v1.api import router as api_router
from .core.config import get_settings
from .core.dependencies import get_swap_service
from .core.exceptions import AppError, InternalError
from .core.logging_config import setup_logging
from .core.scheduler import run_scheduled_tasks

load_dotenv()

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/", "/health"}

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} ({settings.environment}, {settings.storage_backend} storage)")
    swap_service = get_swap_service()

    sweeper = None
    if swap_service.expiry_policy.enabled:
        sweeper = asyncio.create_task(
            run_scheduled_tasks(swap_service, settings.expiry_sweep_interval_seconds)
        )
        logger.info(f"Expiry sweeps every {settings.expiry_sweep_interval_seconds}s")

    yield

    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            logger.info("Expiry sweeper stopped")

app = FastAPI(
    title=settings.app_name,
    description="""
    Swap lifecycle API for the ReWear clothing exchange.

    A swap moves from `pending` through `accepted`, `method_selected`,
    `items_prepared`, `in_transit` (optionally `delivered`) and `confirmed` to
    `completed`. It can be `declined`, `cancelled` before a method is chosen,
    or `disputed` until it finishes.

    ## Authentication

    Every `/swaps` route needs a bearer token whose `sub` claim is the
    caller's user id.
    """,
    version="1.0.0",
    debug=settings.debug,
    lifespan=lifespan,
    swagger_ui_parameters={"persistAuthorization": True, "docExpansion": "none"},
)

cors_origins = ["http://localhost:3000", settings.frontend_url]
if settings.environment == "production":
    cors_origins += ["https://rewear.app", "https://www.rewear.app"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(set(cors_origins)),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)

def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
    }
    for path, operations in schema.get("paths", {}).items():
        if path in PUBLIC_PATHS:
            continue
        for name, operation in operations.items():
            if name != "parameters":
                operation["security"] = [{"bearerAuth": []}]

    app.openapi_schema = schema
    return schema

app.openapi = custom_openapi

@app.get("/")
async def root():
    return {"message": f"Welcome to the {settings.app_name}", "docs": "/docs"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.environment}

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    for error in exc.errors():
        # An unknown exchange method tag gets a readable message instead of the union dump
        if error.get("type") == "union_tag_invalid":
            tag = (error.get("ctx") or {}).get("tag", "")
            return JSONResponse(
                status_code=422,
                content={
                    "error": "validation",
                    "detail": f"Unknown exchange method type: '{tag}'",
                    "hint": "Use one of: in_person, postal, drop_off_point, escrow_service",
                },
            )

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation",
            "detail": [
                {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
                for error in exc.errors()
            ],
        },
    )
