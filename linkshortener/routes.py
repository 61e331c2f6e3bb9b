"""FastAPI route definitions for the link shortener.

A thin shell over LinkService: every endpoint parses input, calls one service
operation and maps domain errors to HTTP status codes. No business logic
lives here.

API Endpoint Overview
=====================
::
    GET   /health
        └─ HealthResponse (200)

    POST  /api/links
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409/422

    GET   /api/links[?owner_id=]
        └─ list[LinkResponse] (200) or 422

    GET   /api/links/:short_code
        └─ LinkResponse (200) or 404

    PATCH /api/links/:short_code
        ├─ LinkUpdate (request body)
        └─ LinkResponse (200) or 400/404/409/422

    GET   /api/links/:short_code/clicks
        └─ list[ClickEventResponse] (200) or 404

    GET   /realtime/:short_code
        └─ text/event-stream or 404

    GET   /:short_code
        └─ 307 Redirect or 404

Key Behaviours
===============
- The redirect path records the click before answering.
- Server-sent events carry one JSON object per change:
  {"clickCount": n, "latestClickMetadata": {...}}.
- A failed live view ends with an "event: closed" frame; the browser may reconnect.
- The watch is released when the client disconnects, and again by a
  background task in case the body was never streamed.
"""

import json
from collections.abc import AsyncGenerator

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, StreamingResponse

from linkshortener.dependencies import RequestContext, get_link_service, get_request_context
from linkshortener.enums import HealthStatus
from linkshortener.exceptions import (
    ConflictError,
    InvalidInputError,
    NoOpError,
    NotFoundError,
    WatchClosedError,
)
from linkshortener.link_service import LinkService
from linkshortener.notifier import LinkWatch
from linkshortener.schemas import (
    ClickEventResponse,
    ClickMetadata,
    HealthResponse,
    LinkCreate,
    LinkResponse,
    LinkUpdate,
)

__all__ = ["router"]

router = APIRouter()


def _click_metadata(request: Request) -> ClickMetadata:
    headers = request.headers
    return ClickMetadata(
        ip_address=headers.get("x-forwarded-for") or headers.get("cf-connecting-ip") or "Unknown",
        user_agent=headers.get("user-agent") or "Unknown",
        country=headers.get("cf-ipcountry") or "Unknown",
    )


async def _release_watch(watch: LinkWatch, service: LinkService) -> None:
    await watch.aclose()
    service.watch_released()


async def _stream_changes(watch: LinkWatch, ctx: RequestContext, service: LinkService) -> AsyncGenerator[str, None]:
    try:
        async for change in watch:
            yield f"data: {json.dumps(change.to_stream_payload())}\n\n"
            ctx.logger.debug(f"Stream updated for {watch.short_code}")
    except WatchClosedError as exc:
        ctx.logger.warning(f"Live view of {watch.short_code} ended: {exc.reason}")
        yield f"event: closed\ndata: {json.dumps({'reason': exc.reason})}\n\n"
    finally:
        await _release_watch(watch, service)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    cache_status = HealthStatus.HEALTHY
    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    return HealthResponse(status=cache_status, cache=cache_status)


@router.post("/api/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        record = await service.create_link(payload.url, payload.owner_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return LinkResponse.from_record(record, service.settings.BASE_URL)


@router.get("/api/links", response_model=list[LinkResponse], tags=["links"])
async def list_links(
    owner_id: str | None = None,
    service: LinkService = Depends(get_link_service),
) -> list[LinkResponse]:
    try:
        records = await service.list_links(owner_id)
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    base_url = service.settings.BASE_URL
    return [LinkResponse.from_record(record, base_url) for record in records]


@router.get("/api/links/{short_code}", response_model=LinkResponse, tags=["links"])
async def get_link(
    short_code: str,
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        record = await service.get_link(short_code)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc

    return LinkResponse.from_record(record, service.settings.BASE_URL)


@router.patch("/api/links/{short_code}", response_model=LinkResponse, tags=["links"])
async def update_link(
    short_code: str,
    payload: LinkUpdate,
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        record = await service.update_link(short_code, payload.url)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc
    except NoOpError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return LinkResponse.from_record(record, service.settings.BASE_URL)


@router.get("/api/links/{short_code}/clicks", response_model=list[ClickEventResponse], tags=["links"])
async def list_clicks(
    short_code: str,
    service: LinkService = Depends(get_link_service),
) -> list[ClickEventResponse]:
    try:
        events = await service.list_clicks(short_code)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc

    return [ClickEventResponse.model_validate(event) for event in events]


@router.get("/realtime/{short_code}", tags=["realtime"])
async def realtime(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> StreamingResponse:
    try:
        watch = await service.watch_link(short_code)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc
    except WatchClosedError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    ctx.logger.info(f"Live view opened for {short_code}")
    # Runs even when the body is never iterated; releasing twice is a no-op.
    cleanup = BackgroundTasks()
    cleanup.add_task(_release_watch, watch, service)
    return StreamingResponse(
        _stream_changes(watch, ctx, service),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
        background=cleanup,
    )


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> RedirectResponse:
    try:
        long_url = await service.resolve_redirect(short_code, _click_metadata(request))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="Short URL not found") from exc
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    ctx.logger.info(
        f"Redirect successful: {short_code} -> {long_url}",
        extra={"operation": "redirect", "short_code": short_code, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=long_url, status_code=307)
