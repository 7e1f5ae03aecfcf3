import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from medtrack import __version__, config
from medtrack.api import (
    auth_router,
    users_router,
    locations_router,
    doctors_router,
    products_router,
    visits_router,
    samples_router,
    orders_router,
    dashboard_router,
    enforce_access,
)
from medtrack.database.connection import engine, Base
from medtrack.exceptions import MedTrackError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables
    Base.metadata.create_all(bind=engine)
    logger.info("MedTrack API %s started, tables ready on %s", __version__, engine.url.render_as_string(hide_password=True))
    yield


app = FastAPI(
    title="MedTrack API",
    description="Pharmaceutical sales-force tracking API",
    version=__version__,
    lifespan=lifespan,
    dependencies=[Depends(enforce_access)],
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_origin_regex=config.ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=config.ALLOWED_METHODS,
    allow_headers=["*"],
)

# ==================== ERROR HANDLERS ====================

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def describe_validation_errors(errors) -> str:
    """'field: message' per problem, joined with '; '."""
    parts = []
    for error in errors:
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        parts.append(f"{'.'.join(location)}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(MedTrackError)
async def medtrack_error_handler(request: Request, exc: MedTrackError):
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return error_response(400, describe_validation_errors(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")

# ==================== ROUTERS ====================

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(locations_router)
app.include_router(doctors_router)
app.include_router(products_router)
app.include_router(visits_router)
app.include_router(samples_router)
app.include_router(orders_router)
app.include_router(dashboard_router)


@app.get("/")
async def root():
    return {
        "message": "MedTrack API",
        "status": "running",
        "version": __version__,
        "endpoints": {
            "auth": "/api/auth",
            "users": "/api/users",
            "locations": "/api/locations",
            "doctors": "/api/doctors",
            "products": "/api/products",
            "visits": "/api/visits",
            "samples": "/api/samples",
            "orders": "/api/orders",
            "dashboard": "/api/dashboard",
            "docs": "/docs"
        }
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("medtrack.main:app", host="0.0.0.0", port=8000)
