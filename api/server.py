import os
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import uvicorn

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from config.logging_config import apply_logging_config
from setup_logging_optimized import setup_logging

# Configure logging for the entire application
setup_logging()
apply_logging_config()

load_dotenv(override=True)

if os.getenv("SENTRY_DSN"):
    sentry_logging = LoggingIntegration(
        level=logging.INFO,        # Capture info and above as breadcrumbs
        event_level=logging.ERROR  # Send errors as events
    )
    sentry_sdk.init(
        dsn=os.getenv("SENTRY_DSN"),
        integrations=[
            FastApiIntegration(transaction_style='endpoint'),
            sentry_logging,
        ],
        traces_sample_rate=0.1,
        environment=os.getenv("ENV", "development"),
        send_default_pii=False,
    )

from agents.generation.config import get_config
from api.image_proxy import router as image_proxy_router
from api.requests.api_lessons import LessonSessionStore, get_usage_tracker, router as lessons_router
from api.requests.api_open_images import OpenImageResponse, process_open_image_search
from models.usage import UsageSnapshot
from services.gemini_service import GeminiService
from services.open_image_service import OpenImageService
from services.usage_tracker import UsageTracker
from utils.storage import DiskCacheStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    quota = get_config().quota
    storage = DiskCacheStorage(quota.storage_dir)
    stop = asyncio.Event()
    watcher = asyncio.create_task(storage.watch(quota.poll_interval, stop))

    app.state.open_images = OpenImageService()
    app.state.usage = UsageTracker(storage, quota)
    app.state.gemini = GeminiService()
    app.state.lesson_sessions = LessonSessionStore()
    logger.info(f"Lesson API ready (usage storage: {quota.storage_dir})")
    try:
        yield
    finally:
        stop.set()
        await watcher
        app.state.usage.close()
        await app.state.open_images.close()
        storage.close()


app = FastAPI(title="Sayuna Lesson API", lifespan=lifespan)

ENVIRONMENT = (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "development").lower()

allowed_origins = {origin.strip() for origin in os.getenv("ALLOWED_ORIGINS", "").split(",") if origin.strip()}
if ENVIRONMENT != "production":
    allowed_origins.update(
        {
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        }
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(image_proxy_router)
app.include_router(lessons_router)


def get_open_image_service(request: Request) -> OpenImageService:
    return request.app.state.open_images


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


@app.get("/api/open-images", response_model=OpenImageResponse)
async def open_images(
    q: str = Query(default=""),
    lang: str = Query(default="EN"),
    service: OpenImageService = Depends(get_open_image_service),
):
    """Best open-licensed educational image for a query."""
    query = q.strip()
    if not query:
        return JSONResponse(status_code=400, content={"error": "Missing q query parameter."})
    return await process_open_image_search(service, query, lang)


@app.get("/api/usage", response_model=UsageSnapshot)
async def usage(tracker: UsageTracker = Depends(get_usage_tracker)):
    """Today's usage counters, re-read from storage."""
    tracker.refresh()
    return tracker.snapshot


if __name__ == "__main__":
    port = int(os.getenv("PORT", "9090"))
    uvicorn.run("api.server:app", host="0.0.0.0", port=port, reload=ENVIRONMENT != "production")
