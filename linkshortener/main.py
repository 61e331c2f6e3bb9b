"""FastAPI application entry point for the link shortener.

This module configures and initializes the FastAPI application with middleware,
lifecycle management, and route registration.

Component Wiring
================
::
    lifespan startup
        └─ ServiceManager.initialize()
              redis client ─► LinkStore ─┬─► AnalyticsRecorder
                                         └─► ChangeNotifier

    request ─► routes ─► LinkService ─► store / recorder / notifier
                                 │
                                 └─► GET /realtime/{code}: SSE frames per ChangeEvent

    lifespan shutdown
        └─ ServiceManager.cleanup(): close_all() watches, then the redis client

How to Use
===========
**Step 1 — Run with uvicorn**::
    uvicorn linkshortener.main:app --host 0.0.0.0 --port 8000 --reload

**Step 2 — Make API calls**::
    curl -X POST http://localhost:8000/api/links \
         -H "Content-Type: application/json" \
         -d '{"url": "https://example.com"}'

    curl -N http://localhost:8000/realtime/<short_code>

Key Behaviours
===============
- The Redis client and core components are created once at startup.
- Open live views are closed before the Redis client on shutdown.
- Prometheus metrics are exposed at /metrics.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from linkshortener.config import get_settings
from linkshortener.dependencies import _service_manager
from linkshortener.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short links with per-click analytics and live click updates",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
