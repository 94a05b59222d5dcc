#=================================================================
# catalog_sync/main_app.py
# FastAPI application entry-point.
#=================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from catalog_sync import __version__, logging_filters
from catalog_sync.routes import router as api_router
from catalog_sync.db import init_db
from catalog_sync.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="Catalog Sync",
    description="Synchronizes XML / new-system product feeds into a WooCommerce catalog.",
    version=__version__,
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(api_router)  # /api/*


# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Catalog Sync", "version": __version__}


# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Request failed: {str(exc)}"},
    )


@app.on_event("startup")
async def _startup():
    # settings tables
    await init_db()
    logger.info("[APP] started; data dir %s", settings.DATA_DIR)
