"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from prometheus_fastapi_instrumentator import Instrumentator

from examhub.core.config import settings
from examhub.core.database import init_db
from examhub.core.errors import ExamHubError
from examhub.core.logging import configure_logging
from examhub.middleware.logging import LoggingMiddleware
from examhub.api.auth import router as auth_router
from examhub.api.exams import router as exams_router
from examhub.api.attempts import router as attempts_router
from examhub.api.quizzes import router as quizzes_router
from examhub.api.admin import router as admin_router

configure_logging()
logger = logging.getLogger(__name__)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    """
    logger.info(f"Starting {settings.APP_NAME} {settings.APP_VERSION} ({settings.ENVIRONMENT})")
    if settings.AUTO_CREATE_TABLES:
        init_db()
        logger.info("Database tables ensured")
    yield
    logger.info("Shutdown complete")

app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])
app.add_middleware(LoggingMiddleware)

if settings.PROMETHEUS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

# Exception handlers
@app.exception_handler(ExamHubError)
async def examhub_exception_handler(request: Request, exc: ExamHubError):
    """Render domain errors as a structured body."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "http_error",
                "status_code": exc.status_code
            }
        }
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "message": "Validation error",
                "type": "validation_error",
                "status_code": 422,
                "details": jsonable_errors(exc),
            }
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    message = "An internal error occurred" if settings.is_production() else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": message,
                "type": "internal_error",
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR
            }
        }
    )

def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]

prefix = settings.API_V1_PREFIX
app.include_router(auth_router, prefix=f"{prefix}/auth", tags=["auth"])
app.include_router(exams_router, prefix=f"{prefix}/exams", tags=["assignment"])
app.include_router(attempts_router, prefix=f"{prefix}/student/attempts", tags=["exam-attempts"])
app.include_router(quizzes_router, prefix=f"{prefix}/quizzes", tags=["quizzes"])
app.include_router(admin_router, prefix=f"{prefix}/admin", tags=["admin"])

@app.get("/health", tags=["Health"])
def health():
    return {"status": "ok", "version": settings.APP_VERSION, "environment": settings.ENVIRONMENT}

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "examhub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        workers=settings.WORKERS if not settings.RELOAD else 1,
        log_level=settings.LOG_LEVEL.lower(),
    )
