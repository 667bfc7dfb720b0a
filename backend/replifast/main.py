"""
RepliFast — FastAPI Backend
Google review sync, AI reply automation and scheduled batch runs.
All data persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from replifast.config import get_settings
from replifast.database import init_db, check_db_connection
from replifast.auth import require_auth
from replifast.routers import automation, cron, reviews

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting RepliFast...")
    try:
        await init_db()
        logger.info("Database initialized, all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="RepliFast",
    description="Review sync and reply automation for Google Business Profile",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Register Routers ─────────────────────────────────────────────────
_auth = [Depends(require_auth)]
app.include_router(automation.router, prefix="/api/automation", tags=["Automation"], dependencies=_auth)
app.include_router(reviews.router, prefix="/api/reviews", tags=["Reviews"], dependencies=_auth)
app.include_router(cron.router, prefix="/api")  # cron secret per route; /trigger uses the API key


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "RepliFast",
        "database": "connected" if db_ok else "disconnected",
    }
