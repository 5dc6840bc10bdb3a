import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

# Import models so every table is registered on Base before create_all
from . import models  # noqa: F401
from .config import ALLOWED_ORIGINS, EXPOSE_ERROR_DETAILS, LOG_LEVEL
from .database import Base, engine
from .domain.orders import router as orders_router
from .domain.reports import router as reports_router
from .errors import AppError
from .shared.responses import failure

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Clinic Back-Office API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Typed application errors → {success: false, error: {message, code}}"""
    if exc.status_code >= 500:
        logger.error(
            f"{request.method} {request.url.path} - {exc.code}: {exc.message}",
            exc_info=getattr(exc, "original_error", None) or exc,
        )
    else:
        logger.warning(f"{request.method} {request.url.path} - {exc.code}: {exc.message}")

    message = exc.message if exc.is_operational or EXPOSE_ERROR_DETAILS else "Something went wrong"
    return JSONResponse(
        status_code=exc.status_code, content=failure(message, exc.code, exc.details)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request fields are a 400 with a machine-readable code"""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg"),
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error for {request.url.path}: {errors}")
    return JSONResponse(
        status_code=400, content=failure("Validation failed", "VALIDATION_ERROR", errors)
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.exception(f"{request.method} {request.url.path} - Database error: {exc}")
    message = str(exc) if EXPOSE_ERROR_DETAILS else "Database operation failed"
    return JSONResponse(status_code=500, content=failure(message, "DATABASE_ERROR"))


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"{request.method} {request.url.path} - Unhandled error: {exc}")
    message = str(exc) if EXPOSE_ERROR_DETAILS else "Internal server error"
    return JSONResponse(status_code=500, content=failure(message, "INTERNAL_ERROR"))


# CORS Configuration
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(orders_router)
app.include_router(reports_router)


@app.get("/")
def root():
    return {"message": "Clinic Back-Office API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
