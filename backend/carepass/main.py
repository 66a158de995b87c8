import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from carepass.config import get_settings
from carepass.db.postgres import engine, Base
from carepass.exceptions import CarePassError
import carepass.models  # noqa: F401 — register all ORM models with Base.metadata

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

from carepass.api.routes import (  # noqa: E402
    session,
    visits,
    access_grants,
    ai_diagnosis,
    super_admin,
    hospital,
    consultations,
    patient,
    doctor,
)
from carepass.api.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting (must be added before CORS so it runs after CORS in the middleware stack)
app.add_middleware(
    RateLimitMiddleware,
    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(session.router, prefix=settings.API_PREFIX, tags=["Session"])
app.include_router(visits.router, prefix=settings.API_PREFIX, tags=["Visits"])
app.include_router(access_grants.router, prefix=settings.API_PREFIX, tags=["Access Grants"])
app.include_router(ai_diagnosis.router, prefix=settings.API_PREFIX, tags=["AI Diagnosis"])
app.include_router(super_admin.router, prefix=settings.API_PREFIX, tags=["Super Admin"])
app.include_router(hospital.router, prefix=settings.API_PREFIX, tags=["Hospital"])
app.include_router(consultations.router, prefix=settings.API_PREFIX, tags=["Consultations"])
app.include_router(patient.router, prefix=settings.API_PREFIX, tags=["Patient"])
app.include_router(doctor.router, prefix=settings.API_PREFIX, tags=["Doctor"])


# ---------------------------------------------------------------------------
# Error envelope: {"success": false, "error": "..."}
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


@app.exception_handler(CarePassError)
async def carepass_error_handler(request: Request, exc: CarePassError):
    return _error(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return _error(400, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, str(exc) or "Internal Server Error")


@app.on_event("startup")
async def startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)


@app.on_event("shutdown")
async def shutdown():
    await engine.dispose()


@app.get("/health")
async def health():
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.APP_VERSION}
