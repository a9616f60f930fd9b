"""
Donation Receipts backend — FastAPI application entry-point.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.config import settings
from app.donations.database import Base, engine
from app.donations.pipeline.errors import PipelineError
from app.donations.pipeline.receipt_renderer import shutdown_renderer
from app.donations.pipeline.storage import LOCAL_URL_PREFIX

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: ensure data dir + tables exist
    os.makedirs(settings.DATA_DIR, exist_ok=True)
    # Import models so Base.metadata knows about them
    from app.donations import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready (%s)", settings.DATABASE_URL)

    yield

    await shutdown_renderer()
    logger.info("Shutting down")


app = FastAPI(
    title="Donation Receipts",
    description="Donation intake → admin review → PDF receipt → e-mail",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed at %s: %s", request.method, request.url.path, exc.step, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "details": exc.message, "step": exc.step},
    )


@app.get("/")
async def root():
    return {"service": "Donation Receipts", "version": "0.1.0", "status": "running"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# ── Locally stored uploads / receipts ────────────────────────────────────
if settings.STORAGE_BACKEND == "local":
    os.makedirs(settings.LOCAL_STORAGE_PATH, exist_ok=True)
    app.mount(LOCAL_URL_PREFIX, StaticFiles(directory=settings.LOCAL_STORAGE_PATH), name="files")


# ── Register API routers ─────────────────────────────────────────────────
from app.donations.routers.donations import router as donations_router  # noqa: E402
from app.donations.routers.receipts import router as receipts_router  # noqa: E402
from app.donations.routers.settings import router as settings_router  # noqa: E402

app.include_router(donations_router, prefix="/api", tags=["Donations"])
app.include_router(receipts_router, prefix="/api", tags=["Receipts"])
app.include_router(settings_router, prefix="/api", tags=["Settings"])
