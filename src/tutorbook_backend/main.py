'''
TutorBook backend application.
'''
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from .database.engine import create_db_engine_and_session_factory, dispose_db_engine
from .services.cache_service import create_cache_service, dispose_cache_service
from .common.exceptions import AppError
from .common.logger import log
from .common.config import settings
from .api import classes, students, sessions, attendance, reports

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Handles application startup and shutdown events.
    """
    # --- On App Startup ---
    log.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}...")
    create_db_engine_and_session_factory()
    create_cache_service()

    yield # --- Application is now running ---

    # --- On App Shutdown ---
    log.info("Application lifespan shutdown...")
    await dispose_cache_service()
    if not settings.TEST_MODE:
        await dispose_db_engine()
    else:
        log.info("Skipping database engine disposal in TEST_MODE.")


# ---- CREATING THE APP ----
app = FastAPI(
    title=settings.APP_NAME,
    description=settings.APP_DESCRIPTION,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# --- Add CORS Middleware ---
origins = [
    # local frontends
    "http://localhost",
    "http://localhost:3000",
    "http://localhost:5173",
]

# Extend with environment-specific origins
origins.extend(settings.BACKEND_CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],)
# --- End of CORS Middleware ---

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Business errors carry a machine code next to the message."""
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )

@app.get("/")
async def health_check():
    return {"status": "ok", "message": f"{settings.APP_NAME} is running"}

app.include_router(classes.router)
app.include_router(students.router)
app.include_router(sessions.router)
app.include_router(attendance.router)
app.include_router(reports.router)
